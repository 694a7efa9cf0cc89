import os
import json
import logging
from typing import NamedTuple, Optional

logger = logging.getLogger(__name__)

# Valores por defecto (los mismos que usa el firmware de la tarjeta)
DEFAULT_USER = "esp8266"
DEFAULT_PASS = "esp8266"
FTP_CTRL_PORT = 21          # Puerto del canal de control
FTP_DATA_PORT_PASV = 50009  # Puerto fijo para el modo pasivo
FTP_TIME_OUT = 5            # Minutos de inactividad hasta cerrar la sesion
HOST = "0.0.0.0"

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))   # carpeta donde está server.py
SERVER_ROOT = os.path.join(BASE_DIR, "data")                                # raíz real del almacenamiento
CONFIG_FILE = os.path.join(BASE_DIR, "ftp_config.json")

# Variable de entorno -> (clave, conversor)
ENV_VARS = {
    "FTP_USER": ("user", str),
    "FTP_PASS": ("password", str),
    "FTP_CTRL_PORT": ("ctrl_port", int),
    "FTP_DATA_PORT_PASV": ("pasv_port", int),
    "FTP_TIME_OUT": ("timeout_minutes", int),
    "FTP_HOST": ("host", str),
    "FTP_ROOT": ("root", str),
    "FTP_PASV_ADDRESS": ("pasv_address", str),
    "FTP_DEBUG": ("debug", str),
}


class ConfigError(ValueError):
    pass


class FtpConfig(NamedTuple):
    """Configuración del servidor. Se construye una vez al arrancar y no cambia."""
    user: str = DEFAULT_USER
    password: str = DEFAULT_PASS
    ctrl_port: int = FTP_CTRL_PORT
    pasv_port: int = FTP_DATA_PORT_PASV
    timeout_minutes: int = FTP_TIME_OUT
    host: str = HOST
    root: str = SERVER_ROOT
    pasv_address: Optional[str] = None
    debug: bool = False

    @property
    def timeout_seconds(self) -> int:
        return self.timeout_minutes * 60


def _as_bool(value):
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_port(name, value):
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {value!r}")
    if not 0 <= port <= 65535:
        raise ConfigError(f"{name} out of range: {port}")
    return port


def load_config_file(path):
    if path and os.path.exists(path):
        with open(path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: expected a JSON object")
        logger.info(f"[CFG] Configuración leída de {path}")
        return data
    return {}


def save_config_file(path, values):
    with open(path, "w") as f:
        json.dump(values, f, indent=2)


def load_config(path=None, environ=None) -> FtpConfig:
    """
    Combina valores por defecto, el fichero JSON y las variables de entorno
    (en ese orden de prioridad creciente).
    """
    if environ is None:
        environ = os.environ
    if path is None:
        path = environ.get("FTP_CONFIG", CONFIG_FILE)

    values = {}
    for key, value in load_config_file(path).items():
        if key not in FtpConfig._fields:
            logger.warning(f"[CFG] Clave desconocida ignorada: {key}")
            continue
        values[key] = value

    for env_name, (key, convert) in ENV_VARS.items():
        raw = environ.get(env_name, "").strip()
        if raw:
            try:
                values[key] = convert(raw)
            except ValueError:
                raise ConfigError(f"{env_name} must be an integer, got {raw!r}")

    values["ctrl_port"] = _as_port("ctrl_port", values.get("ctrl_port", FTP_CTRL_PORT))
    values["pasv_port"] = _as_port("pasv_port", values.get("pasv_port", FTP_DATA_PORT_PASV))
    try:
        values["timeout_minutes"] = int(values.get("timeout_minutes", FTP_TIME_OUT))
    except (TypeError, ValueError):
        raise ConfigError(f"timeout_minutes must be an integer, got {values.get('timeout_minutes')!r}")
    if values["timeout_minutes"] <= 0:
        raise ConfigError("timeout_minutes must be positive")
    values["debug"] = _as_bool(values.get("debug", False))
    if not values.get("pasv_address"):
        values["pasv_address"] = None
    values["root"] = os.path.abspath(values.get("root", SERVER_ROOT))

    return FtpConfig(**values)
