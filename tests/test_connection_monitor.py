"""Tests for the WhatsApp connection monitor and its timers."""

import asyncio

import pytest

from konver.core.config import Settings
from konver.core.exceptions import StorageError
from konver.monitor import ConnectionState, PeriodicTask, WhatsAppConnectionMonitor
from konver.schemas.whatsapp import CreateInstanceResult, WhatsAppConnectionStatus

from conftest import BOT_ID


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeService:
    """Scriptable stand-in for WhatsAppService"""

    def __init__(self):
        self.status = WhatsAppConnectionStatus(status="disconnected")
        self.connect_results = []
        self.calls = []

    async def get_connection_status(self, bot_id):
        self.calls.append("status")
        if isinstance(self.status, Exception):
            raise self.status
        return self.status

    async def create_or_connect_instance(self, bot_id):
        self.calls.append("connect")
        if self.connect_results:
            return self.connect_results.pop(0)
        return CreateInstanceResult(success=True, instance_name="bot_abc", qr_code="QR-1")

    async def disconnect_instance(self, bot_id):
        self.calls.append("disconnect")
        self.status = WhatsAppConnectionStatus(status="disconnected", instance_name="bot_abc")
        return True

    async def delete_instance(self, bot_id):
        self.calls.append("delete")
        self.status = WhatsAppConnectionStatus(status="disconnected")
        return True


def connecting(qr_code="QR-1"):
    return WhatsAppConnectionStatus(status="connecting", instance_name="bot_abc", qr_code=qr_code)


def connected():
    return WhatsAppConnectionStatus(
        status="connected", instance_name="bot_abc", phone_number="5511999998888", profile_name="Loja"
    )


@pytest.fixture
def service():
    return FakeService()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def make_monitor(service, clock, notifications):
    def _make(**kwargs):
        return WhatsAppConnectionMonitor(
            BOT_ID,
            service,
            notifier=lambda level, message: notifications.append((level, message)),
            clock=clock,
            **kwargs
        )
    return _make


class TestStateMachine:

    def test_disconnected_suspends_polling(self, make_monitor):
        async def scenario():
            monitor = make_monitor()
            await monitor.start()
            assert monitor.state == ConnectionState.DISCONNECTED
            assert monitor.poll_interval is None
            assert not monitor.qr_refresh_active
            monitor.shutdown()

        asyncio.run(scenario())

    def test_connect_starts_fast_polling_and_qr_check(self, make_monitor, service, notifications):
        async def scenario():
            monitor = make_monitor()
            await monitor.start()

            service.status = connecting()
            result = await monitor.connect()

            assert result.success
            assert monitor.state == ConnectionState.CONNECTING
            assert monitor.qr_code == "QR-1"
            assert monitor.poll_interval == 3.0
            assert monitor.qr_refresh_active
            assert notifications == [("success", "QR Code gerado! Escaneie no WhatsApp para conectar.")]
            monitor.shutdown()

        asyncio.run(scenario())

    def test_connected_switches_to_slow_polling(self, make_monitor, service):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()

            service.status = connected()
            await monitor.refresh_status()

            assert monitor.state == ConnectionState.CONNECTED
            assert monitor.poll_interval == 30.0
            assert monitor.phone_number == "5511999998888"
            assert monitor.qr_code is None
            assert not monitor.qr_refresh_active
            monitor.shutdown()

        asyncio.run(scenario())

    def test_lost_connection_suspends_polling(self, make_monitor, service):
        async def scenario():
            monitor = make_monitor()
            service.status = connected()
            await monitor.start()
            assert monitor.poll_interval == 30.0

            service.status = WhatsAppConnectionStatus(status="disconnected", instance_name="bot_abc")
            await monitor.refresh_status()

            assert monitor.state == ConnectionState.DISCONNECTED
            assert monitor.poll_interval is None
            monitor.shutdown()

        asyncio.run(scenario())

    def test_disconnect(self, make_monitor, service, notifications):
        async def scenario():
            monitor = make_monitor()
            service.status = connected()
            await monitor.start()

            assert await monitor.disconnect() is True

            assert monitor.state == ConnectionState.DISCONNECTED
            assert monitor.poll_interval is None
            assert notifications[-1] == ("success", "WhatsApp desconectado com sucesso!")
            monitor.shutdown()

        asyncio.run(scenario())

    def test_delete_instance(self, make_monitor, service, notifications):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()

            assert await monitor.delete_instance() is True

            assert monitor.state == ConnectionState.DISCONNECTED
            assert monitor.qr_code is None
            assert not monitor.qr_refresh_active
            assert notifications[-1] == ("success", "Instância WhatsApp removida com sucesso!")
            monitor.shutdown()

        asyncio.run(scenario())

    def test_failed_connect_reports_error(self, make_monitor, service, notifications):
        async def scenario():
            monitor = make_monitor()
            service.connect_results = [CreateInstanceResult(success=False, error="Bot não encontrado")]

            result = await monitor.connect()

            assert not result.success
            assert monitor.error == "Bot não encontrado"
            assert notifications == [("error", "Erro ao gerar QR Code: Bot não encontrado")]
            assert monitor.poll_interval is None

        asyncio.run(scenario())

    def test_status_error_keeps_state(self, make_monitor, service):
        async def scenario():
            monitor = make_monitor()
            service.status = connected()
            await monitor.start()

            service.status = StorageError("Database error")
            await monitor.refresh_status()

            assert monitor.state == ConnectionState.CONNECTED
            assert monitor.error == "Database error"
            assert monitor.poll_interval == 30.0
            monitor.shutdown()

        asyncio.run(scenario())


class TestQrRefresh:

    def test_qr_not_expired_at_ttl(self, make_monitor, service, clock):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()

            clock.advance(20)
            assert not monitor.qr_code_expired()
            assert await monitor.check_qr_expiry() is False
            monitor.shutdown()

        asyncio.run(scenario())

    def test_expired_qr_is_refreshed(self, make_monitor, service, clock, notifications):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()
            service.connect_results = [CreateInstanceResult(success=True, instance_name="bot_abc", qr_code="QR-2")]

            clock.advance(21)
            assert await monitor.check_qr_expiry() is True

            assert monitor.qr_code == "QR-2"
            assert monitor.qr_generated_at == clock.now
            assert not monitor.qr_code_expired()
            assert notifications[-1] == ("success", "QR Code renovado")
            monitor.shutdown()

        asyncio.run(scenario())

    def test_same_qr_from_poll_keeps_timestamp(self, make_monitor, service, clock):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()
            generated_at = monitor.qr_generated_at

            clock.advance(10)
            await monitor.refresh_status()

            assert monitor.qr_generated_at == generated_at
            monitor.shutdown()

        asyncio.run(scenario())

    def test_refresh_stops_after_three_failures(self, make_monitor, service, clock, notifications):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()
            service.connect_results = [
                CreateInstanceResult(success=False, error="Evolution API unreachable") for _ in range(3)
            ]
            clock.advance(30)

            for _ in range(3):
                assert await monitor.refresh_qr_code() is False

            assert monitor.consecutive_failures == 3
            assert monitor.qr_refresh_exhausted
            assert not monitor.qr_refresh_active
            assert notifications[-1] == ("error", "Falha ao renovar QR Code. Tente reconectar.")
            assert [level for level, _ in notifications].count("error") == 1

            calls_before = list(service.calls)
            assert await monitor.refresh_qr_code() is False
            assert service.calls == calls_before

            # polling does not revive the exhausted QR check
            await monitor.refresh_status()
            assert not monitor.qr_refresh_active
            assert monitor.poll_interval == 3.0
            monitor.shutdown()

        asyncio.run(scenario())

    def test_new_qr_resets_failures(self, make_monitor, service):
        async def scenario():
            monitor = make_monitor()
            service.status = connecting()
            await monitor.connect()
            service.connect_results = [CreateInstanceResult(success=False, error="boom") for _ in range(3)]
            for _ in range(3):
                await monitor.refresh_qr_code()

            service.status = connecting(qr_code="QR-FROM-GATEWAY")
            await monitor.refresh_status()

            assert monitor.consecutive_failures == 0
            assert monitor.qr_refresh_active
            monitor.shutdown()

        asyncio.run(scenario())


class TestFromSettings:

    def test_default_timings(self, service):
        monitor = WhatsAppConnectionMonitor.from_settings(BOT_ID, service)

        assert monitor.poll_intervals[ConnectionState.CONNECTING] == 3.0
        assert monitor.poll_intervals[ConnectionState.CONNECTED] == 30.0
        assert monitor.qr_ttl == 20.0
        assert monitor.qr_check_interval == 5.0
        assert monitor.max_qr_failures == 3

    def test_timings_from_environment(self, service, monkeypatch):
        monkeypatch.setenv("WHATSAPP_QR_TTL", "12")
        monkeypatch.setenv("WHATSAPP_QR_MAX_FAILURES", "5")

        monitor = WhatsAppConnectionMonitor.from_settings(BOT_ID, service, settings=Settings())

        assert monitor.qr_ttl == 12.0
        assert monitor.max_qr_failures == 5

    def test_custom_timings_drive_schedule(self, service, clock, notifications):
        custom = Settings(
            WHATSAPP_POLL_CONNECTING=1.5,
            WHATSAPP_POLL_CONNECTED=45,
            WHATSAPP_QR_TTL=8,
            WHATSAPP_QR_CHECK_INTERVAL=2,
            WHATSAPP_QR_MAX_FAILURES=1,
        )

        async def scenario():
            monitor = WhatsAppConnectionMonitor.from_settings(
                BOT_ID,
                service,
                settings=custom,
                notifier=lambda level, message: notifications.append((level, message)),
                clock=clock,
            )
            service.status = connecting()
            await monitor.connect()
            assert monitor.poll_interval == 1.5
            assert monitor.qr_refresh_active

            clock.advance(9)
            service.connect_results = [CreateInstanceResult(success=False, error="boom")]
            assert await monitor.check_qr_expiry() is True
            assert monitor.qr_refresh_exhausted
            assert not monitor.qr_refresh_active
            assert notifications[-1] == ("error", "Falha ao renovar QR Code. Tente reconectar.")

            service.status = connected()
            await monitor.refresh_status()
            assert monitor.poll_interval == 45.0
            monitor.shutdown()

        asyncio.run(scenario())


class TestPeriodicTask:

    def test_interval_must_be_positive(self):
        with pytest.raises(ValueError):
            PeriodicTask(0, lambda: None)

    def test_runs_repeatedly_until_cancelled(self):
        async def scenario():
            runs = []

            async def tick():
                runs.append(1)

            task = PeriodicTask(0.01, tick, name="tick")
            task.start()
            await asyncio.sleep(0.1)
            task.cancel()
            count = len(runs)
            await asyncio.sleep(0.05)

            assert count >= 2
            assert len(runs) == count
            assert not task.is_running

        asyncio.run(scenario())

    def test_cancel_from_inside_callback(self):
        async def scenario():
            runs = []

            async def tick():
                runs.append(1)
                task.cancel()

            task = PeriodicTask(0.01, tick, name="once")
            task.start()
            await asyncio.sleep(0.1)

            assert runs == [1]
            assert not task.is_running

        asyncio.run(scenario())

    def test_failing_callback_keeps_timer_alive(self):
        async def scenario():
            runs = []

            async def tick():
                runs.append(1)
                raise RuntimeError("boom")

            task = PeriodicTask(0.01, tick, name="failing")
            task.start()
            await asyncio.sleep(0.1)
            assert task.is_running
            task.cancel()

            assert len(runs) >= 2

        asyncio.run(scenario())
