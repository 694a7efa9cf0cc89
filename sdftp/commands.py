import enum
import logging
from sdftp.paths import resolve, parent_dir, PathTooLongError
from sdftp.listing import mlsd_header, mlsd_line
from sdftp.transfer import Direction, start_transfer, abort_transfer

logger = logging.getLogger(__name__)


class Verb(enum.Enum):
    CDUP = "CDUP"
    CWD = "CWD"
    PWD = "PWD"
    QUIT = "QUIT"
    MODE = "MODE"
    STRU = "STRU"
    TYPE = "TYPE"
    PASV = "PASV"
    PORT = "PORT"
    ABOR = "ABOR"
    DELE = "DELE"
    LIST = "LIST"
    MLSD = "MLSD"
    NLST = "NLST"
    NOOP = "NOOP"
    RETR = "RETR"
    STOR = "STOR"
    MKD = "MKD"
    RMD = "RMD"
    RNFR = "RNFR"
    RNTO = "RNTO"
    FEAT = "FEAT"
    MDTM = "MDTM"
    SIZE = "SIZE"
    SITE = "SITE"

    @classmethod
    def parse(cls, token):
        try:
            return cls(token)
        except ValueError:
            return None


# --- UTILIDADES ---

def make_path(arg, session, missing="501 No file name"):
    """
    Ruta absoluta para el parámetro, o None si ya se respondió con error
    (parámetro ausente o ruta demasiado larga).
    """
    if not arg:
        session.send(missing)
        return None
    try:
        return resolve(session.current_dir, arg)
    except PathTooLongError:
        session.send("500 Command line too long")
        return None

def listing_dir(arg, session):
    # NLST/MLSD aceptan un directorio opcional
    if not arg:
        return session.current_dir
    return make_path(arg, session)

def listing_failed(path, error, session):
    logger.error(f"[ERROR][FS] Error leyendo {path}: {error}")
    session.send("451 Requested action aborted. Local error in processing")
    session.data.stop()

# --- COMANDOS DE CONTROL DE ACCESO ---

def CDUP(arg, session):
    session.current_dir = parent_dir(session.current_dir)
    session.send(f"250 Ok. Current directory is {session.current_dir}")

def CWD(arg, session):
    if arg == ".":  # 'CWD .' equivale a PWD
        PWD(arg, session)
        return
    path = make_path(arg, session, missing="501 No directory name")
    if path is None:
        return
    if session.storage.is_dir(path):
        session.current_dir = path
        session.send(f"250 Ok. Current directory is {session.current_dir}")
    else:
        session.send(f"550 Can't open directory {session.current_dir}")

def PWD(arg, session):
    session.send(f'257 "{session.current_dir}" is your current directory')

def QUIT(arg, session):
    session.disconnect()
    return True

# --- PARÁMETROS DE TRANSFERENCIA ---

def MODE(arg, session):
    if arg.upper() == "S":
        session.send("200 S Ok")
    else:
        session.send("504 Only S(tream) is suported")

def STRU(arg, session):
    if arg.upper() == "F":
        session.send("200 F Ok")
    else:
        session.send("504 Only F(ile) is suported")

def TYPE(arg, session):
    # Siempre se transfiere byte a byte: A e I solo se aceptan
    a = arg.upper()
    if a == "A":
        session.send("200 TYPE is now ASCII")
    elif a == "I":
        session.send("200 TYPE is now 8-bit binary")
    else:
        session.send("504 Unknown TYPE")

def PASV(arg, session):
    session.send(session.data.set_passive(session.client.local_ip()))

def PORT(arg, session):
    if session.data.set_active(arg):
        session.send("200 PORT command successful")
    else:
        session.send("501 Can't interpret parameters")

# --- COMANDOS DE SERVICIO ---

def ABOR(arg, session):
    abort_transfer(session)
    session.send("226 Data connection closed")

def DELE(arg, session):
    path = make_path(arg, session)
    if path is None:
        return
    if not session.storage.exists(path):
        session.send(f"550 File {arg} not found")
    elif session.storage.remove(path):
        session.send(f"250 Deleted {arg}")
    else:
        session.send(f"450 Can't delete {arg}")

def LIST(arg, session):
    session.send("502 Command not implemented")

def MLSD(arg, session):
    path = listing_dir(arg, session)
    if path is None:
        return
    if not session.storage.is_dir(path):
        session.send(f"550 Can't open directory {arg or path}")
        return
    if not session.data.connect():
        session.send("425 No data connection MLSD")
        session.data.stop()
        return
    session.send("150 Accepted data connection")
    conn = session.data.connection
    lines = mlsd_header(path)
    for line in lines:
        conn.println(line)
    count = len(lines)
    try:
        for entry in session.storage.list_dir(path):
            conn.println(mlsd_line(entry))
            count += 1
    except OSError as e:
        listing_failed(path, e, session)
        return
    logger.debug(f"[MLSD] {count} entradas en {path}")
    session.send("226 MLSD completed")
    session.data.stop()

def NLST(arg, session):
    path = listing_dir(arg, session)
    if path is None:
        return
    if not session.storage.is_dir(path):
        session.send(f"550 Can't open directory {arg or path}")
        return
    if not session.data.connect():
        session.send("425 No data connection")
        session.data.stop()
        return
    session.send("150 Accepted data connection")
    conn = session.data.connection
    count = 0
    try:
        for entry in session.storage.list_dir(path):
            conn.println(entry.name)
            count += 1
    except OSError as e:
        listing_failed(path, e, session)
        return
    session.send(f"226 {count} matches total")
    session.data.stop()

def NOOP(arg, session):
    session.send("200 Zzz...")

def RETR(arg, session):
    path = make_path(arg, session)
    if path is None:
        return
    # Cerrar cualquier transferencia previa antes de abrir otro fichero
    abort_transfer(session)
    handle = session.storage.open(path, "r")
    if handle is None:
        session.send(f"550 File {arg} not found")
        return
    if not session.data.connect():
        handle.close()
        session.data.stop()
        session.send("425 No data connection")
        return
    size = session.storage.file_size(handle)
    logger.info(f"[RETR] Enviando {path} ({size} bytes)")
    session.send(f"150-Connected to port {session.data.port}")
    session.send(f"150 {size} bytes to download")
    start_transfer(session, Direction.DOWNLOAD, handle, path)

def STOR(arg, session):
    path = make_path(arg, session)
    if path is None:
        return
    abort_transfer(session)
    handle = session.storage.open(path, "w")
    if handle is None:
        session.send(f"451 Can't open/create {arg}")
        return
    if not session.data.connect():
        handle.close()
        session.data.stop()
        session.send("425 No data connection")
        return
    logger.info(f"[STOR] Recibiendo {path}")
    session.send(f"150 Connected to port {session.data.port}")
    start_transfer(session, Direction.UPLOAD, handle, path)

def MKD(arg, session):
    path = make_path(arg, session, missing="501 No directory name")
    if path is None:
        return
    if session.storage.mkdir(path, True):
        session.send(f"200 Directory {arg} created")
    else:
        session.send(f'550 Can\'t create "{arg}"')

def RMD(arg, session):
    path = make_path(arg, session, missing="501 No directory name")
    if path is None:
        return
    if session.storage.rmdir(path):
        session.send(f"200 Directory {arg} deleted")
    else:
        session.send(f'501 Can\'t delete "{arg}"')

def RNFR(arg, session):
    session.rename_from = None
    path = make_path(arg, session)
    if path is None:
        return
    if not session.storage.exists(path):
        session.send(f"550 File {arg} not found")
        return
    logger.info(f"[RNFR] Renombrando {path}")
    session.rename_from = path
    session.send("350 RNFR accepted - file or folder exists, ready for destination")

def RNTO(arg, session):
    source, session.rename_from = session.rename_from, None
    if source is None:
        session.send("503 Need RNFR before RNTO")
        return
    path = make_path(arg, session)
    if path is None:
        return
    if session.storage.exists(path):
        session.send(f"553 {arg} already exists")
    elif session.storage.rename(source, path):
        session.send(f"200 Rename/move of file or directory from {source} to {path} successfully")
    else:
        session.send(f"451 Rename/move from {source} to {path} failure")

# --- EXTENSIONES (RFC 3659) ---

def FEAT(arg, session):
    session.send("211-Extensions suported:")
    session.send(" MLSD")
    session.send(" SIZE")
    session.send("211 End.")

def MDTM(arg, session):
    session.send("550 Unable to retrieve time")

def SIZE(arg, session):
    path = make_path(arg, session)
    if path is None:
        return
    handle = session.storage.open(path, "r")
    if handle is None:
        session.send(f"450 Can't open {arg}")
        return
    try:
        session.send(f"213 {session.storage.file_size(handle)}")
    finally:
        handle.close()

def SITE(arg, session):
    session.send(f"500 Unknown SITE command {arg}")


HANDLERS = {
    Verb.CDUP: CDUP,
    Verb.CWD: CWD,
    Verb.PWD: PWD,
    Verb.QUIT: QUIT,
    Verb.MODE: MODE,
    Verb.STRU: STRU,
    Verb.TYPE: TYPE,
    Verb.PASV: PASV,
    Verb.PORT: PORT,
    Verb.ABOR: ABOR,
    Verb.DELE: DELE,
    Verb.LIST: LIST,
    Verb.MLSD: MLSD,
    Verb.NLST: NLST,
    Verb.NOOP: NOOP,
    Verb.RETR: RETR,
    Verb.STOR: STOR,
    Verb.MKD: MKD,
    Verb.RMD: RMD,
    Verb.RNFR: RNFR,
    Verb.RNTO: RNTO,
    Verb.FEAT: FEAT,
    Verb.MDTM: MDTM,
    Verb.SIZE: SIZE,
    Verb.SITE: SITE,
}


def handle_command(command, arg, session):
    """
    Ejecuta un comando ya parseado.
    Devuelve True si se debe terminar la conexión (QUIT), False en otro caso.
    """
    verb = Verb.parse(command)
    if verb is None:
        session.send("500 Unknown command")
        return False
    return HANDLERS[verb](arg, session) is True
