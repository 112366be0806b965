"""
WhatsApp connection monitor

Tracks the connection state of one bot's WhatsApp instance by polling, and
keeps the pairing QR code fresh while the instance is waiting to be scanned.

    disconnected --connect()--> connecting --scan--> connected
         ^                          |                    |
         +---- disconnect() / delete_instance() / lost --+

Polling runs every 3 s while connecting and every 30 s while connected, and
is suspended while disconnected until the user acts again.
"""
import logging
import time
from enum import Enum
from typing import Callable, Optional

from konver.core.config import settings as app_settings
from konver.core.exceptions import KonverError
from konver.monitor.scheduler import PeriodicTask
from konver.schemas.whatsapp import WhatsAppConnectionStatus, CreateInstanceResult

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


Notifier = Callable[[str, str], None]  # (level, message), level is "success" or "error"


def log_notifier(level: str, message: str) -> None:
    """Default notifier: route user notifications to the log"""
    if level == "error":
        logger.warning(message)
    else:
        logger.info(message)


class WhatsAppConnectionMonitor:
    """
    Polling state machine for one bot's WhatsApp connection.

    ``service`` is anything with the async WhatsAppService methods
    get_connection_status, create_or_connect_instance, disconnect_instance and
    delete_instance. ``clock`` returns seconds and is only compared with itself.
    """

    def __init__(
        self,
        bot_id: str,
        service,
        notifier: Optional[Notifier] = None,
        poll_connecting: float = 3.0,
        poll_connected: float = 30.0,
        qr_ttl: float = 20.0,
        qr_check_interval: float = 5.0,
        max_qr_failures: int = 3,
        clock: Callable[[], float] = time.monotonic
    ):
        self.bot_id = bot_id
        self.service = service
        self.notify = notifier or log_notifier
        self.poll_intervals = {
            ConnectionState.CONNECTING: poll_connecting,
            ConnectionState.CONNECTED: poll_connected,
        }
        self.qr_ttl = qr_ttl
        self.qr_check_interval = qr_check_interval
        self.max_qr_failures = max_qr_failures
        self.clock = clock

        self.state = ConnectionState.DISCONNECTED
        self.instance_name: Optional[str] = None
        self.phone_number: Optional[str] = None
        self.profile_name: Optional[str] = None
        self.qr_code: Optional[str] = None
        self.qr_generated_at: Optional[float] = None
        self.consecutive_failures = 0
        self.is_connecting = False
        self.error: Optional[str] = None

        self._poll_task: Optional[PeriodicTask] = None
        self._qr_task: Optional[PeriodicTask] = None

    @classmethod
    def from_settings(
        cls,
        bot_id: str,
        service,
        settings=None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """Build a monitor with the WhatsApp timings from application settings"""
        settings = settings or app_settings
        return cls(
            bot_id,
            service,
            notifier=notifier,
            poll_connecting=settings.WHATSAPP_POLL_CONNECTING,
            poll_connected=settings.WHATSAPP_POLL_CONNECTED,
            qr_ttl=settings.WHATSAPP_QR_TTL,
            qr_check_interval=settings.WHATSAPP_QR_CHECK_INTERVAL,
            max_qr_failures=settings.WHATSAPP_QR_MAX_FAILURES,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    @property
    def poll_interval(self) -> Optional[float]:
        """Current polling interval, None while polling is suspended"""
        if self._poll_task is None or not self._poll_task.is_running:
            return None
        return self._poll_task.interval

    @property
    def qr_refresh_active(self) -> bool:
        return self._qr_task is not None and self._qr_task.is_running

    @property
    def qr_refresh_exhausted(self) -> bool:
        return self.consecutive_failures >= self.max_qr_failures

    def _reschedule(self) -> None:
        interval = self.poll_intervals.get(self.state)
        if interval is None:
            self._cancel_poll()
        elif self._poll_task is None or self._poll_task.interval != interval:
            self._cancel_poll()
            self._poll_task = PeriodicTask(interval, self.refresh_status, name=f"whatsapp-status-{self.bot_id}")
            self._poll_task.start()

        wants_qr_check = (
            self.state == ConnectionState.CONNECTING
            and self.qr_generated_at is not None
            and not self.qr_refresh_exhausted
        )
        if not wants_qr_check:
            self._cancel_qr_check()
        elif self._qr_task is None:
            self._qr_task = PeriodicTask(
                self.qr_check_interval, self.check_qr_expiry, name=f"whatsapp-qr-{self.bot_id}"
            )
            self._qr_task.start()

    def _cancel_poll(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    def _cancel_qr_check(self) -> None:
        if self._qr_task is not None:
            self._qr_task.cancel()
            self._qr_task = None

    def shutdown(self) -> None:
        """Cancel every pending timer"""
        self._cancel_poll()
        self._cancel_qr_check()
        logger.info(f"WhatsApp monitor for bot {self.bot_id} stopped")

    # ------------------------------------------------------------------
    # Status polling
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load the current status once and schedule polling accordingly"""
        await self.refresh_status()

    async def refresh_status(self) -> None:
        """Poll the connection status and move the state machine"""
        try:
            status = await self.service.get_connection_status(self.bot_id)
        except KonverError as e:
            self.error = e.error or "Erro ao verificar status"
            logger.error(f"Status check failed for bot {self.bot_id}: {e}")
            return

        self._apply_status(status)

    def _apply_status(self, status: WhatsAppConnectionStatus) -> None:
        previous = self.state
        self.state = ConnectionState(status.status)
        self.instance_name = status.instance_name
        self.phone_number = status.phone_number
        self.profile_name = status.profile_name
        self.error = None

        if status.qr_code:
            if status.qr_code != self.qr_code:
                self._set_qr_code(status.qr_code)
        else:
            self.qr_code = None
            self.qr_generated_at = None

        if previous != self.state:
            logger.info(f"WhatsApp bot {self.bot_id}: {previous.value} -> {self.state.value}")
        self._reschedule()

    def _set_qr_code(self, qr_code: str) -> None:
        self.qr_code = qr_code
        self.qr_generated_at = self.clock()
        self.consecutive_failures = 0

    # ------------------------------------------------------------------
    # QR code refresh
    # ------------------------------------------------------------------

    def qr_code_expired(self) -> bool:
        if self.qr_generated_at is None:
            return False
        return self.clock() - self.qr_generated_at > self.qr_ttl

    async def check_qr_expiry(self) -> bool:
        """
        Request a fresh QR code when the current one is past its lifetime.

        :return: True if a refresh was attempted.
        """
        if self.state != ConnectionState.CONNECTING or not self.qr_code_expired():
            return False

        logger.info("QR Code expired, refreshing...")
        await self.refresh_qr_code()
        return True

    async def refresh_qr_code(self) -> bool:
        """
        Ask the gateway for a new QR code.

        Consecutive failures are counted; once the limit is reached automatic
        refresh stops until a new code arrives or the user reconnects.

        :return: True if a new QR code was obtained.
        """
        if self.qr_refresh_exhausted:
            logger.warning("Too many consecutive failures, stopping QR refresh")
            return False
        if not self.instance_name:
            return False

        logger.info("Refreshing QR Code...")
        try:
            result = await self.service.create_or_connect_instance(self.bot_id)
            if not result.success or not result.qr_code:
                raise KonverError(result.error or "Failed to refresh QR code")
        except KonverError as e:
            self.consecutive_failures += 1
            logger.error(
                f"Failed to refresh QR code ({self.consecutive_failures}/{self.max_qr_failures}): {e}"
            )
            if self.qr_refresh_exhausted:
                self.notify("error", "Falha ao renovar QR Code. Tente reconectar.")
                self._cancel_qr_check()
            return False

        self._set_qr_code(result.qr_code)
        self.notify("success", "QR Code renovado")
        return True

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------

    async def connect(self) -> CreateInstanceResult:
        """Create or reconnect the instance and start tracking its pairing"""
        self.is_connecting = True
        self.error = None
        try:
            result = await self.service.create_or_connect_instance(self.bot_id)
        finally:
            self.is_connecting = False

        if not result.success:
            self.error = result.error or "Erro ao conectar WhatsApp"
            self.notify("error", f"Erro ao gerar QR Code: {self.error}")
            return result

        self.instance_name = result.instance_name
        if result.qr_code:
            self._set_qr_code(result.qr_code)
        self.notify("success", "QR Code gerado! Escaneie no WhatsApp para conectar.")

        await self.refresh_status()
        return result

    async def disconnect(self) -> bool:
        """Log the instance out; polling is suspended afterwards"""
        success = await self.service.disconnect_instance(self.bot_id)
        if not success:
            self.error = "Falha ao desconectar WhatsApp"
            self.notify("error", f"Erro ao desconectar: {self.error}")
            return False

        self.qr_code = None
        self.qr_generated_at = None
        self.notify("success", "WhatsApp desconectado com sucesso!")
        await self.refresh_status()
        return True

    async def delete_instance(self) -> bool:
        """Remove the instance entirely; polling is suspended afterwards"""
        success = await self.service.delete_instance(self.bot_id)
        if not success:
            self.error = "Falha ao remover instância WhatsApp"
            self.notify("error", f"Erro ao remover instância: {self.error}")
            return False

        self.qr_code = None
        self.qr_generated_at = None
        self.notify("success", "Instância WhatsApp removida com sucesso!")
        await self.refresh_status()
        return True
