import os
import time
import errno
import logging
import posixpath
from typing import NamedTuple

logger = logging.getLogger(__name__)

FAT_EPOCH_YEAR = 1980

class DirEntry(NamedTuple):
    name: str
    is_dir: bool
    size: int
    modify_date: int    # fecha FAT empaquetada
    modify_time: int    # hora FAT empaquetada

# --- FECHAS FAT ---

def pack_fat_datetime(timestamp):
    """Convierte un timestamp (UTC) al par (fecha, hora) del formato FAT."""
    t = time.gmtime(timestamp)
    if t.tm_year < FAT_EPOCH_YEAR:
        return (1 << 5) | 1, 0
    fat_date = ((t.tm_year - FAT_EPOCH_YEAR) << 9) | (t.tm_mon << 5) | t.tm_mday
    fat_time = (t.tm_hour << 11) | (t.tm_min << 5) | (t.tm_sec // 2)
    return fat_date, fat_time

def unpack_fat_date(fat_date):
    return FAT_EPOCH_YEAR + (fat_date >> 9), (fat_date >> 5) & 0x0F, fat_date & 0x1F

def unpack_fat_time(fat_time):
    return fat_time >> 11, (fat_time >> 5) & 0x3F, 2 * (fat_time & 0x1F)


class Storage:
    """
    Sistema de ficheros jerárquico que consume el servidor. Las rutas son
    siempre absolutas ('/' es la raíz del almacenamiento).
    """
    ready = False

    def begin(self) -> bool:
        raise NotImplementedError

    def exists(self, path) -> bool:
        raise NotImplementedError

    def is_dir(self, path) -> bool:
        raise NotImplementedError

    def open(self, path, mode="r"):
        raise NotImplementedError

    def file_size(self, handle) -> int:
        raise NotImplementedError

    def remove(self, path) -> bool:
        raise NotImplementedError

    def rename(self, old, new) -> bool:
        raise NotImplementedError

    def mkdir(self, path, recursive=True) -> bool:
        raise NotImplementedError

    def rmdir(self, path) -> bool:
        raise NotImplementedError

    def list_dir(self, path):
        raise NotImplementedError


class LocalStorage(Storage):
    """Publica un directorio local como raíz del almacenamiento."""

    def __init__(self, root):
        self.root = os.path.abspath(root)
        self.ready = False

    def begin(self):
        # Solo se inicializa una vez aunque se abran varias sesiones
        if self.ready:
            return True
        try:
            os.makedirs(self.root, exist_ok=True)
        except OSError as e:
            logger.error(f"[FS] No se pudo preparar {self.root}: {e}")
            return False
        self.ready = True
        logger.info(f"[FS] Almacenamiento listo en {self.root}")
        return True

    def real_path(self, path):
        # normpath sobre una ruta absoluta nunca sube por encima de '/'
        virtual = posixpath.normpath("/" + path.lstrip("/"))
        relative = virtual.lstrip("/")
        if not relative:
            return self.root
        return os.path.join(self.root, *relative.split("/"))

    def exists(self, path):
        return os.path.exists(self.real_path(path))

    def is_dir(self, path):
        return os.path.isdir(self.real_path(path))

    def open(self, path, mode="r"):
        real = self.real_path(path)
        if os.path.isdir(real):
            return None
        try:
            return open(real, "rb" if mode == "r" else "wb")
        except OSError as e:
            logger.debug(f"[FS] No se pudo abrir {path} ({mode}): {e}")
            return None

    def file_size(self, handle):
        return os.fstat(handle.fileno()).st_size

    def remove(self, path):
        real = self.real_path(path)
        if not os.path.isfile(real):
            return False
        try:
            os.remove(real)
            return True
        except OSError as e:
            logger.warning(f"[FS] Error borrando {path}: {e}")
            return False

    def rename(self, old, new):
        try:
            os.rename(self.real_path(old), self.real_path(new))
            return True
        except OSError as e:
            logger.warning(f"[FS] Error renombrando {old} -> {new}: {e}")
            return False

    def mkdir(self, path, recursive=True):
        real = self.real_path(path)
        try:
            if recursive:
                os.makedirs(real)
            else:
                os.mkdir(real)
            return True
        except OSError as e:
            if e.errno != errno.EEXIST:
                logger.warning(f"[FS] Error creando {path}: {e}")
            return False

    def rmdir(self, path):
        real = self.real_path(path)
        if real == self.root:
            return False
        try:
            os.rmdir(real)
            return True
        except OSError as e:
            logger.warning(f"[FS] Error eliminando directorio {path}: {e}")
            return False

    def list_dir(self, path):
        real = self.real_path(path)
        with os.scandir(real) as it:
            entries = sorted(it, key=lambda e: e.name)
        for entry in entries:
            try:
                st = entry.stat()
            except OSError:
                continue
            is_dir = entry.is_dir()
            fat_date, fat_time = pack_fat_datetime(st.st_mtime)
            yield DirEntry(entry.name, is_dir, 0 if is_dir else st.st_size, fat_date, fat_time)
