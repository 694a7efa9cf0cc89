import time
import logging
from sdftp import commands as command
from sdftp.config import FtpConfig
from sdftp.datachannel import DataChannel
from sdftp.lines import LineStatus
from sdftp.session import Session, SessionState
from sdftp.storage import LocalStorage
from sdftp.transfer import advance, abort_transfer
from sdftp.transport import SocketListener, connect_to
from sdftp.users import check_user, check_credentials

logger = logging.getLogger(__name__)

FTP_SERVER_VERSION = "sdftp-1.0"
USER_GRACE = 10             # Segundos para recibir USER tras conectar
AUTH_FAIL_DELAY = 0.1       # Pausa tras un fallo de autenticación
TIMEOUT_DELAY = 0.2         # Pausa tras cerrar por inactividad
TICK_INTERVAL = 0.005       # Espera entre ticks del bucle principal

# Estados en los que corre el plazo de inactividad
TIMED_STATES = (SessionState.AWAITING_USER, SessionState.AWAITING_PASSWORD, SessionState.READY)


class FtpServer:
    """
    Máquina de estados de la sesión de control. Todo avanza desde
    handle_ftp(), que se llama periódicamente (un tick).
    """

    def __init__(self, config: FtpConfig, storage=None, ctrl_listener=None,
                 data_listener=None, connector=connect_to, clock=time.monotonic,
                 sleep=time.sleep):
        self.config = config
        self.storage = storage if storage is not None else LocalStorage(config.root)
        self.ctrl_listener = ctrl_listener
        self.data_listener = data_listener
        self.connector = connector
        self.clock = clock
        self.sleep = sleep
        self.delay_until = 0.0
        self.session = None

    def begin(self):
        """Abre los listeners y deja la máquina en DISCONNECTED."""
        if self.ctrl_listener is None:
            self.ctrl_listener = SocketListener(self.config.host, self.config.ctrl_port, backlog=5)
        if self.data_listener is None:
            try:
                self.data_listener = SocketListener(self.config.host, self.config.pasv_port)
            except OSError:
                self.ctrl_listener.close()
                self.ctrl_listener = None
                raise
        data_channel = DataChannel(self.data_listener, self.config.pasv_address,
                                   connector=self.connector, clock=self.clock, sleep=self.sleep)
        self.session = Session(None, self.storage, data_channel, self.clock)
        self.delay_until = 0.0
        logger.info(f"[CORE] Servidor FTP escuchando en {self.config.host}:{self.ctrl_listener.port} "
                    f"(PASV {self.data_listener.port})")

    def close(self):
        if self.session is not None:
            self.session.disconnect()
            self.session.data.stop()
        for listener in (self.ctrl_listener, self.data_listener):
            if listener is not None:
                listener.close()

    @property
    def state(self):
        return self.session.state

    # --- TICK ---

    def handle_ftp(self):
        session = self.session
        now = self.clock()
        if now < self.delay_until:
            return
        try:
            self.tick(session, now)
        except Exception as e:
            # Un fallo inesperado cierra la sesión, no el servidor
            logger.exception(f"[ERROR][CORE] Error en el tick: {e}")
            abort_transfer(session)
            session.state = SessionState.DISCONNECTED

    def tick(self, session, now):
        if self.ctrl_listener.has_client():
            new_client = self.ctrl_listener.accept()
            if new_client is not None:
                # Solo hay una sesión: la nueva conexión sustituye a la anterior
                logger.info("[CORE] Nueva conexión, cerrando la anterior")
                session.disconnect()
                session.client = new_client
                session.state = SessionState.AWAITING_CONNECTION

        state = session.state
        if state is SessionState.DISCONNECTED:
            if session.client is not None and session.client.connected():
                session.disconnect()
            session.state = SessionState.AWAITING_CONNECTION
        elif state is SessionState.AWAITING_CONNECTION:
            abort_transfer(session)
            if session.client is not None and not session.client.connected():
                session.client.close()
            session.reset()
            logger.info(f"[CORE] Esperando conexión en el puerto {self.ctrl_listener.port}")
            session.state = SessionState.IDLE
        elif state is SessionState.IDLE:
            if session.client is not None and session.client.connected():
                self.client_connected(session)
                session.deadline = now + USER_GRACE
                session.state = SessionState.AWAITING_USER
        else:
            self.read_command(session, now)

        if session.transfer is not None:
            advance(session)
        elif session.state in TIMED_STATES and now >= session.deadline:
            logger.info("[CORE] Sesión cerrada por inactividad")
            session.send("530 Timeout")
            self.delay_until = now + TIMEOUT_DELAY
            session.state = SessionState.DISCONNECTED

    def read_command(self, session, now):
        result = session.reader.read_line(session.client)
        if result.status is LineStatus.READY:
            logger.debug(f"[CORE] << {result.command} "
                         f"{'****' if result.command == 'PASS' else result.parameters}")
            state = session.state
            if state is SessionState.AWAITING_USER:
                if self.user_identity(session, result):
                    session.state = SessionState.AWAITING_PASSWORD
                else:
                    self.delay_until = now + AUTH_FAIL_DELAY
                    session.state = SessionState.DISCONNECTED
            elif state is SessionState.AWAITING_PASSWORD:
                if self.user_password(session, result):
                    session.state = SessionState.READY
                    session.deadline = now + self.config.timeout_seconds
                    self.init_storage()
                else:
                    self.delay_until = now + AUTH_FAIL_DELAY
                    session.state = SessionState.DISCONNECTED
            elif state is SessionState.READY:
                if command.handle_command(result.command, result.parameters, session):
                    session.state = SessionState.DISCONNECTED
                else:
                    session.deadline = now + self.config.timeout_seconds
        elif result.status is LineStatus.INCOMPLETE and not session.client.connected():
            logger.info("[CORE] Cliente desconectado")
            session.state = SessionState.AWAITING_CONNECTION

    # --- AUTENTICACIÓN ---

    def client_connected(self, session):
        logger.info("[CORE] Cliente conectado")
        session.send("220--- Welcome to FTP for SD storage ---")
        session.send("220---   By sdftp ---")
        session.send(f"220 --   Version {FTP_SERVER_VERSION}   --")
        session.reader.reset()

    def user_identity(self, session, result):
        if result.command != "USER":
            session.send("500 Syntax error")
            return False
        if not check_user(self.config, result.parameters):
            logger.warning(f"[AUTH] Usuario desconocido: {result.parameters}")
            session.send("530 user not found")
            return False
        session.send("331 OK. Password required")
        session.current_dir = "/"
        return True

    def user_password(self, session, result):
        if result.command != "PASS":
            session.send("500 Syntax error")
            return False
        if not check_credentials(self.config, self.config.user, result.parameters):
            logger.warning("[AUTH] Contraseña incorrecta")
            session.send("530 Login incorrect")
            return False
        logger.info("[AUTH] Login correcto. Esperando comandos.")
        session.send("230 OK.")
        return True

    def init_storage(self):
        # El almacenamiento se inicializa una sola vez para todas las sesiones
        if not self.storage.ready:
            self.storage.begin()


def start_ftp_server(config: FtpConfig, tick_interval=TICK_INTERVAL):
    server = FtpServer(config)
    try:
        server.begin()
        while True:
            server.handle_ftp()
            time.sleep(tick_interval)
    except KeyboardInterrupt:
        logger.info("Servidor detenido por teclado")
    finally:
        server.close()
