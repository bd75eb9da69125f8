"""Node settings: RPC endpoints, baker fee and Telegram notifications."""

import logging
import re
from typing import Iterable

from pydantic import ValidationError

from ..core.config import CHAIN_IDS, get_settings
from ..core.types import ConsoleSettings, Severity
from ..data.api import ApiError, ApiGateway, BackendError
from ..data.chain import ChainDataProvider
from .lifecycle import WorkflowScope
from .notifications import NotificationBus

logger = logging.getLogger(__name__)

MIN_ENDPOINT_LENGTH = 10
TELEGRAM_API_KEY = re.compile(r"\d{9}:[0-9A-Za-z_-]{35}")
SAVED_AUTO_HIDE_MS = 3000


class SettingsValidationError(ValueError):
    """Input rejected before any call was made; shown next to the field."""


def parse_chat_ids(chat_ids: str | Iterable[str | int]) -> list[int]:
    """Chat ids as typed (space or comma separated) to integers."""
    if isinstance(chat_ids, str):
        chat_ids = [c for c in re.split(r"[ ,]", chat_ids) if c]
    parsed = []
    for chat_id in chat_ids:
        try:
            parsed.append(int(chat_id))
        except (TypeError, ValueError):
            raise SettingsValidationError("Telegram chatId must be a positive or negative number.") from None
    if not parsed:
        raise SettingsValidationError("At least one Telegram chatId is required.")
    return parsed


class SettingsService:
    """Reads and edits the node's settings. Every successful save reloads them."""

    def __init__(self, api: ApiGateway, chain: ChainDataProvider, bus: NotificationBus):
        self.api = api
        self.chain = chain
        self.bus = bus
        self.network = get_settings().network
        self.scope = WorkflowScope("settings")
        self.settings: ConsoleSettings | None = None

    async def load(self) -> ConsoleSettings | None:
        ticket = self.scope.claim("load")
        if ticket is None:
            return self.settings
        try:
            data = await self.api.get("/api/settings/")
            if not isinstance(data, dict):
                raise BackendError("Unexpected settings response")
            settings = ConsoleSettings.from_api(data)
        except (ApiError, ValidationError, ValueError) as e:
            if ticket.valid:
                self.bus.error("Loading Settings Error", str(e))
            return self.settings
        finally:
            ticket.release()

        if ticket.valid:
            self.settings = settings
        return self.settings

    async def _save(self, path: str, body: dict, success: str, title: str = "Saved Settings") -> bool:
        ticket = self.scope.claim(path)
        if ticket is None:
            return False
        try:
            await self.api.post(path, body)
        except ApiError as e:
            if ticket.valid:
                self.bus.error("Settings Error", str(e))
            return False
        finally:
            ticket.release()

        if not ticket.valid:
            return False
        await self.load()
        self.bus.publish(title, success, Severity.SUCCESS, auto_hide_ms=SAVED_AUTO_HIDE_MS)
        return True

    async def add_endpoint(self, url: str) -> bool:
        """Add an RPC endpoint after checking it serves the configured network."""
        url = url.strip().rstrip("/")
        if len(url) < MIN_ENDPOINT_LENGTH:
            raise SettingsValidationError("That does not appear a valid URL")

        expected = CHAIN_IDS.get(self.network)
        try:
            header = await self.chain.get_head_header(url)
            chain_id = header.get("chain_id") if isinstance(header, dict) else None
            if chain_id != expected:
                raise BackendError(
                    f"RPC chain ({chain_id}) does not match {expected}. Please use a correct RPC server."
                )
        except ApiError as e:
            self.bus.error("Add RPC Error", f"There was an error in validating the RPC URL: {e}")
            return False

        logger.info(f"Adding RPC endpoint {url}")
        return await self._save("/api/settings/addendpoint", {"rpc": url}, "Added RPC Server", "RPC Success")

    async def delete_endpoint(self, endpoint_id: int) -> bool:
        return await self._save(
            "/api/settings/deleteendpoint", {"rpc": int(endpoint_id)}, "Deleted RPC Server", "RPC Success"
        )

    async def save_baker_fee(self, fee: int | str) -> bool:
        try:
            fee = int(fee)
        except (TypeError, ValueError):
            fee = 0
        if not 1 <= fee <= 99:
            raise SettingsValidationError("Baker fee must be an integer value between 1 and 99")
        return await self._save(
            "/api/settings/bakersettings", {"bakerfee": fee}, "Successfully saved baker settings."
        )

    async def save_telegram(self, chat_ids: str | Iterable[str | int], api_key: str) -> bool:
        ids = parse_chat_ids(chat_ids)
        api_key = api_key.strip()
        if not TELEGRAM_API_KEY.search(api_key):
            raise SettingsValidationError("Provided API key does not match known pattern.")
        return await self._save(
            "/api/settings/savetelegram",
            {"chatids": ids, "apikey": api_key},
            "Saved Telegram config. You should receive a test message soon. "
            "If not, check your config values and save again.",
            "Save Telegram Success",
        )

    def teardown(self) -> None:
        self.scope.teardown()
