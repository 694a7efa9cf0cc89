import enum
import logging
from sdftp.lines import LineReader
from sdftp.transfer import abort_transfer

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    DISCONNECTED = 0
    AWAITING_CONNECTION = 1
    IDLE = 2
    AWAITING_USER = 3
    AWAITING_PASSWORD = 4
    READY = 5


class Session: # Estado de la única sesión de control
    def __init__(self, client, storage, data_channel, clock):
        self.client = client                # conexión de control
        self.storage = storage
        self.data = data_channel
        self.clock = clock
        self.state = SessionState.DISCONNECTED
        self.current_dir = "/"
        self.deadline = 0.0                 # fin del plazo de inactividad
        self.rename_from = None
        self.reader = LineReader()
        self.transfer = None

    def send(self, line):
        logger.debug(f"[CORE] >> {line}")
        self.client.println(line)

    def disconnect(self):
        """Aborta la transferencia abierta, despide al cliente y cierra."""
        abort_transfer(self)
        if self.client is not None:
            logger.info("[CORE] Desconectando cliente")
            self.send("221 Goodbye")
            self.client.close()

    def reset(self):
        """Variables por defecto para una nueva conexión."""
        self.current_dir = "/"
        self.rename_from = None
        self.reader.reset()
        self.data.reset()
