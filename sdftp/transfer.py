"""
Motor de transferencias: copia por bloques entre el fichero abierto y la
conexión de datos, un bloque por tick.
"""
import enum
import logging

logger = logging.getLogger(__name__)

FTP_BUF_SIZE = 1024         # Tamaño de cada bloque transferido


class Direction(enum.Enum):
    DOWNLOAD = "download"   # servidor -> cliente (RETR)
    UPLOAD = "upload"       # cliente -> servidor (STOR)


class Transfer:
    def __init__(self, direction, file, path, started_at):
        self.direction = direction
        self.file = file
        self.path = path
        self.bytes_transferred = 0
        self.started_at = started_at


def start_transfer(session, direction, file, path):
    # Nunca dos transferencias abiertas a la vez
    if session.transfer is not None:
        abort_transfer(session)
    session.transfer = Transfer(direction, file, path, session.clock())
    return session.transfer


def advance(session):
    """Avanza la transferencia abierta. Devuelve True si queda trabajo."""
    transfer = session.transfer
    if transfer is None:
        return False
    if transfer.direction is Direction.DOWNLOAD:
        return advance_download(session)
    return advance_upload(session)


def advance_download(session):
    transfer = session.transfer
    conn = session.data.connection
    if conn is None or not conn.connected():
        close_transfer(session)
        return False
    try:
        chunk = transfer.file.read(FTP_BUF_SIZE)
    except OSError as e:
        fail_transfer(session, e)
        return False
    if chunk:
        conn.write(chunk)
        transfer.bytes_transferred += len(chunk)
        return True
    close_transfer(session)
    return False


def advance_upload(session):
    transfer = session.transfer
    conn = session.data.connection
    if conn is None or not conn.connected():
        close_transfer(session)
        return False
    if conn.available():
        chunk = conn.read(FTP_BUF_SIZE)
        if chunk:
            try:
                transfer.file.write(chunk)
            except OSError as e:
                fail_transfer(session, e)
                return False
            transfer.bytes_transferred += len(chunk)
    return True


def close_transfer(session):
    transfer = session.transfer
    elapsed_ms = int((session.clock() - transfer.started_at) * 1000)
    if elapsed_ms > 0 and transfer.bytes_transferred > 0:
        session.send("226-File successfully transferred")
        session.send(f"226 {elapsed_ms} ms, {transfer.bytes_transferred // elapsed_ms} kbytes/s")
    else:
        session.send("226 File successfully transferred")
    logger.info(f"[DATA] {transfer.direction.value} de {transfer.path} terminado: "
                f"{transfer.bytes_transferred} bytes en {elapsed_ms} ms")
    _release(session)
    return transfer


def abort_transfer(session):
    """Cierra fichero y conexión de datos. No hace nada si no hay transferencia."""
    transfer = session.transfer
    if transfer is None:
        return None
    _release(session)
    session.send("426 Transfer aborted")
    logger.info(f"[DATA] Transferencia de {transfer.path} abortada")
    return transfer


def fail_transfer(session, error):
    """Error de almacenamiento a mitad de transferencia: se libera todo y se avisa."""
    transfer = session.transfer
    logger.error(f"[ERROR][DATA] Error de E/S en {transfer.path}: {error}")
    _release(session)
    session.send("451 Requested action aborted. Local error in processing")
    return transfer


def _release(session):
    transfer = session.transfer
    session.transfer = None
    try:
        transfer.file.close()
    except OSError as e:
        logger.warning(f"[DATA] Error cerrando {transfer.path}: {e}")
    session.data.stop()
