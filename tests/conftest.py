"""Fixtures compartidas: transporte en memoria, reloj manual y servidor cableado."""

import pytest

from sdftp.config import FtpConfig
from sdftp.server_core import FtpServer
from sdftp.session import SessionState
from sdftp.storage import LocalStorage
from sdftp.transport import Connection, Listener


class FakeConnection(Connection):
    """Conexión en memoria. `inbox` es lo que envía el cliente, `outbox` lo que recibe."""

    def __init__(self, ip="192.168.1.10"):
        self.ip = ip
        self.inbox = bytearray()
        self.outbox = bytearray()
        self.peer_closed = False
        self.closed = False

    def feed(self, data):
        if isinstance(data, str):
            data = data.encode()
        self.inbox.extend(data)

    def send_line(self, line):
        self.feed(line + "\r\n")

    def available(self):
        return not self.closed and len(self.inbox) > 0

    def read(self, size=1):
        chunk = bytes(self.inbox[:size])
        del self.inbox[:size]
        return chunk

    def write(self, data):
        if self.closed:
            return 0
        self.outbox.extend(data)
        return len(data)

    def connected(self):
        return not self.closed and (not self.peer_closed or len(self.inbox) > 0)

    def close(self):
        self.closed = True

    def local_ip(self):
        return self.ip

    def lines(self):
        return self.outbox.decode().split("\r\n")[:-1]

    def take_lines(self):
        lines = self.lines()
        self.outbox.clear()
        return lines


class FakeListener(Listener):
    def __init__(self, port):
        self.port = port
        self.pending = []
        self.closed = False

    def has_client(self):
        return len(self.pending) > 0

    def accept(self):
        return self.pending.pop(0) if self.pending else None

    def close(self):
        self.closed = True


class ManualClock:
    """Reloj que solo avanza a mano (o con sleep)."""

    def __init__(self, start=1000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

    def sleep(self, seconds):
        self.now += seconds


class FakeConnector:
    """Sustituye a connect_to() en modo activo."""

    def __init__(self):
        self.calls = []
        self.connections = []

    def __call__(self, ip, port, timeout):
        self.calls.append((ip, port))
        return self.connections.pop(0) if self.connections else None


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def storage(tmp_path):
    return LocalStorage(tmp_path / "root")


@pytest.fixture
def config(tmp_path):
    return FtpConfig(user="bob", password="secret", ctrl_port=21, pasv_port=50009,
                     timeout_minutes=5, root=str(tmp_path / "root"))


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def server(config, storage, clock, connector):
    srv = FtpServer(config, storage=storage, ctrl_listener=FakeListener(21),
                    data_listener=FakeListener(50009), connector=connector,
                    clock=clock, sleep=clock.sleep)
    srv.begin()
    yield srv
    srv.close()


def connect_client(server, client=None):
    """Conecta un cliente y avanza hasta que recibe el saludo."""
    client = client or FakeConnection()
    server.ctrl_listener.pending.append(client)
    server.handle_ftp()
    server.handle_ftp()
    return client


def send_command(server, client, line, ticks=1):
    """Envía una línea y devuelve las respuestas nuevas."""
    client.outbox.clear()
    client.send_line(line)
    for _ in range(ticks):
        server.handle_ftp()
    return client.take_lines()


@pytest.fixture
def client(server):
    """Cliente ya autenticado como bob."""
    conn = connect_client(server)
    send_command(server, conn, "USER bob")
    send_command(server, conn, "PASS secret")
    assert server.state is SessionState.READY
    conn.outbox.clear()
    return conn


@pytest.fixture
def passive_data(server):
    """Deja preparada una conexión de datos entrante en el listener pasivo."""
    conn = FakeConnection()
    server.data_listener.pending.append(conn)
    return conn
