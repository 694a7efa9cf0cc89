"""
Colaboradores de red: una conexión de bytes bidireccional y un listener.

El núcleo del servidor solo usa la interfaz de Connection / Listener, así que
los tests pueden sustituirlos por objetos en memoria.
"""
import socket
import select
import time
import logging

logger = logging.getLogger(__name__)

BUFFER_SIZE = 4096          # Máximo de bytes leídos y retenidos en memoria
SEND_TIMEOUT = 10           # Segundos máximos bloqueados en un sendall


class Connection:
    """Conexión de bytes: available(), read(), write(), connected(), close()."""

    def available(self) -> bool:
        raise NotImplementedError

    def read(self, size=1) -> bytes:
        raise NotImplementedError

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def connected(self) -> bool:
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def local_ip(self):
        raise NotImplementedError

    def println(self, line=""):
        self.write(f"{line}\r\n".encode())


class Listener:
    def has_client(self) -> bool:
        raise NotImplementedError

    def accept(self):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


class SocketConnection(Connection):
    def __init__(self, sock, address=None):
        self.sock = sock
        self.address = address
        self._buffer = bytearray()
        self._eof = False
        self._closed = False
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(SEND_TIMEOUT)

    def _fill(self):
        # Lee lo que haya pendiente sin bloquear, sin pasar de BUFFER_SIZE
        room = BUFFER_SIZE - len(self._buffer)
        if self._closed or self._eof or room <= 0:
            return
        try:
            readable, _, _ = select.select([self.sock], [], [], 0)
            if not readable:
                return
            data = self.sock.recv(room)
        except OSError as e:
            logger.debug(f"[NET] Error leyendo de {self.address}: {e}")
            self._eof = True
            return
        if data:
            self._buffer.extend(data)
        else:
            self._eof = True

    def available(self):
        self._fill()
        return len(self._buffer) > 0

    def read(self, size=1):
        if not self._buffer:
            self._fill()
        chunk = bytes(self._buffer[:size])
        del self._buffer[:size]
        return chunk

    def write(self, data):
        if self._closed:
            return 0
        try:
            self.sock.sendall(data)
            return len(data)
        except OSError as e:
            logger.warning(f"[NET] Error enviando a {self.address}: {e}")
            self._eof = True
            self._buffer.clear()
            return 0

    def connected(self):
        if self._closed:
            return False
        self._fill()
        # Mientras queden bytes sin leer la conexión sigue "viva"
        return not self._eof or len(self._buffer) > 0

    def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()

    def local_ip(self):
        return self.sock.getsockname()[0]


class SocketListener(Listener):
    def __init__(self, host, port, backlog=1):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(backlog)
        sock.setblocking(False)
        self.sock = sock
        self.port = sock.getsockname()[1]

    def has_client(self):
        readable, _, _ = select.select([self.sock], [], [], 0)
        return bool(readable)

    def accept(self):
        try:
            conn, addr = self.sock.accept()
        except (BlockingIOError, InterruptedError):
            return None
        logger.info(f"[NET] Conexión aceptada desde {addr} en el puerto {self.port}")
        return SocketConnection(conn, addr)

    def close(self):
        self.sock.close()


def connect_to(ip, port, timeout=10):
    """Conexión de datos saliente (modo activo). Devuelve None si falla."""
    try:
        sock = socket.create_connection((ip, port), timeout=timeout)
    except OSError as e:
        logger.warning(f"[PORT] Error conectando al cliente {ip}:{port}: {e}")
        return None
    return SocketConnection(sock, (ip, port))


def poll_until(predicate, timeout, interval=0.01, clock=time.monotonic, sleep=time.sleep):
    """
    Espera acotada y cooperativa: evalúa predicate() hasta que sea cierto o
    pasen `timeout` segundos, cediendo `interval` entre intentos.
    """
    deadline = clock() + timeout
    while True:
        if predicate():
            return True
        if clock() >= deadline:
            return False
        sleep(interval)
