"""
Lectura de líneas de comando del canal de control.

Los bytes se consumen de uno en uno: '\\' se normaliza a '/', '\\r' se
ignora y '\\n' cierra la línea. El buffer tiene capacidad fija; superarla no
trunca en silencio, devuelve TOO_LONG.
"""
import enum
import logging
from typing import NamedTuple

logger = logging.getLogger(__name__)

FTP_CMD_SIZE = 255 + 8      # Capacidad de la línea de comando
MAX_TOKEN = 4               # Los verbos FTP tienen como mucho 4 letras


class LineStatus(enum.Enum):
    INCOMPLETE = "incomplete"
    EMPTY = "empty"
    TOO_LONG = "too_long"
    SYNTAX_ERROR = "syntax_error"
    READY = "ready"


class LineResult(NamedTuple):
    status: LineStatus
    command: str = ""
    parameters: str = ""


INCOMPLETE = LineResult(LineStatus.INCOMPLETE)


def split_command(line):
    """Separa 'VERBO parámetros'. Devuelve None si el verbo es demasiado largo."""
    token, sep, rest = line.partition(" ")
    if len(token) > MAX_TOKEN:
        return None
    return token.upper(), rest.lstrip(" ") if sep else ""


class LineReader:
    def __init__(self, capacity=FTP_CMD_SIZE):
        self.capacity = capacity
        self.buffer = bytearray()
        self.discarding = False

    def reset(self):
        self.buffer.clear()
        self.discarding = False

    def feed(self, byte):
        """Procesa un byte. Devuelve un LineResult (INCOMPLETE si falta línea)."""
        if byte == b"\\":
            byte = b"/"
        if byte == b"\r":
            return INCOMPLETE
        if byte == b"\n":
            if self.discarding:
                # Fin del resto de una línea demasiado larga
                self.discarding = False
                return INCOMPLETE
            return self._finish()
        if self.discarding:
            return INCOMPLETE
        if len(self.buffer) >= self.capacity:
            self.buffer.clear()
            self.discarding = True
            return LineResult(LineStatus.TOO_LONG)
        self.buffer.extend(byte)
        return INCOMPLETE

    def _finish(self):
        if not self.buffer:
            return LineResult(LineStatus.EMPTY)
        line = self.buffer.decode("utf-8", errors="replace")
        self.buffer.clear()
        parts = split_command(line)
        if parts is None:
            return LineResult(LineStatus.SYNTAX_ERROR)
        return LineResult(LineStatus.READY, *parts)

    def read_line(self, conn):
        """
        Consume bytes disponibles de `conn` hasta completar una línea.
        Los errores de sintaxis se notifican al cliente aquí mismo.
        """
        while conn.available():
            result = self.feed(conn.read(1))
            if result.status is LineStatus.INCOMPLETE:
                continue
            if result.status in (LineStatus.TOO_LONG, LineStatus.SYNTAX_ERROR):
                logger.debug(f"[CORE] Línea rechazada: {result.status.value}")
                conn.println("500 Syntax error")
            return result
        return INCOMPLETE
