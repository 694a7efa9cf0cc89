import time
import calendar
from sdftp.storage import unpack_fat_date, unpack_fat_time


def fat_timestamp(fat_date, fat_time):
    """
    Fecha y hora FAT -> 'YYYYMMDDHHMMSS'. Pasa por timegm/gmtime para
    normalizar valores fuera de rango (p. ej. segundos = 60).
    """
    year, month, day = unpack_fat_date(fat_date)
    hour, minute, second = unpack_fat_time(fat_time)
    # Mes 0 o > 12: se lleva al año anterior/siguiente como hace mktime
    year += (month - 1) // 12
    month = (month - 1) % 12 + 1
    seconds = calendar.timegm((year, month, day, hour, minute, second, 0, 0, 0))
    return time.strftime("%Y%m%d%H%M%S", time.gmtime(seconds))


def mlsd_header(path):
    # Entradas sintéticas que preceden al contenido real
    return [f"Type=cdir;Perm=cmpel; {path}", "Type=pdir;Perm=el; "]


def mlsd_line(entry):
    modify = fat_timestamp(entry.modify_date, entry.modify_time)
    if entry.is_dir:
        return f"Type=dir;modify={modify};Perm=cpmel; {entry.name}"
    return f"Type=file;Size={entry.size};modify={modify};Perm=adfrw; {entry.name}"
