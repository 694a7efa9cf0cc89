import enum
import socket
import logging
import time
from sdftp.transport import connect_to, poll_until

logger = logging.getLogger(__name__)

DATA_CONNECT_TIMEOUT = 10   # Segundos esperando la conexión de datos


class DataMode(enum.Enum):
    PASSIVE = "passive"
    ACTIVE = "active"


def parse_port_argument(arg):
    """
    'h1,h2,h3,h4,p1,p2' -> (ip, puerto). Devuelve None si no se puede
    interpretar.
    """
    parts = arg.strip().split(",") if arg else []
    if len(parts) != 6:
        return None
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        return None
    if any(n < 0 or n > 255 for n in numbers):
        return None
    ip_address = ".".join(str(n) for n in numbers[:4])
    port = numbers[4] * 256 + numbers[5]
    return ip_address, port


def advertised_ip(pasv_address, local_ip, resolver=socket.gethostbyname):
    """
    IP anunciada en la respuesta PASV: la de FTP_PASV_ADDRESS (nombre o IP)
    si se resuelve a una dirección que no es loopback, si no la IP local del
    canal de control.
    """
    if pasv_address:
        try:
            resolved = resolver(pasv_address)
            if not resolved.startswith("127."):
                return resolved
        except OSError as e:
            logger.warning(f"[PASV] No se pudo resolver {pasv_address}: {e}")
    return local_ip


def format_pasv_reply(ip, port):
    ip_parts = ip.split(".")
    p1, p2 = port >> 8, port & 255
    return f"227 Entering Passive Mode ({ip_parts[0]},{ip_parts[1]},{ip_parts[2]},{ip_parts[3]},{p1},{p2})."


class DataChannel:
    """
    Segunda conexión usada por RETR/STOR/NLST/MLSD. El modo y el extremo
    remoto se fijan con PASV/PORT; la conexión se abre al primer comando
    que la necesita.
    """

    def __init__(self, listener, pasv_address=None, connector=connect_to,
                 timeout=DATA_CONNECT_TIMEOUT, clock=time.monotonic, sleep=time.sleep,
                 resolver=socket.gethostbyname):
        self.listener = listener
        self.pasv_address = pasv_address
        self.resolver = resolver
        self.connector = connector
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep
        self.mode = DataMode.PASSIVE
        self.ip = None
        self.port = listener.port
        self.connection = None

    def reset(self):
        self.stop()
        self.mode = DataMode.PASSIVE
        self.ip = None
        self.port = self.listener.port

    def stop(self):
        if self.connection is not None:
            self.connection.close()
            self.connection = None

    def set_passive(self, local_ip):
        """Devuelve la respuesta 227 con la dirección anunciada."""
        self.stop()
        self.ip = advertised_ip(self.pasv_address, local_ip, self.resolver)
        self.port = self.listener.port
        self.mode = DataMode.PASSIVE
        logger.info(f"[PASV] anunciando {self.ip}:{self.port}")
        return format_pasv_reply(self.ip, self.port)

    def set_active(self, arg):
        self.stop()
        endpoint = parse_port_argument(arg)
        if endpoint is None:
            return False
        self.ip, self.port = endpoint
        self.mode = DataMode.ACTIVE
        logger.info(f"[PORT] Cliente solicita conexión activa a {self.ip}:{self.port}")
        return True

    def connect(self):
        """Devuelve True si hay conexión de datos (ya abierta o recién abierta)."""
        if self.connection is not None and self.connection.connected():
            return True
        self.stop()

        if self.mode is DataMode.ACTIVE:
            self.connection = self.connector(self.ip, self.port, self.timeout)
        elif poll_until(self.listener.has_client, self.timeout,
                        clock=self.clock, sleep=self.sleep):
            self.connection = self.listener.accept()
        else:
            logger.warning("[PASV] Timeout esperando conexión del cliente")

        return self.connection is not None and self.connection.connected()
