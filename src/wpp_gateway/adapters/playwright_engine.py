"""WhatsApp Web automation engine driven by Playwright."""

import asyncio
import base64
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime

from playwright.async_api import (
    BrowserContext,
    Locator,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import Error as PlaywrightError

from wpp_gateway.domain.engine import (
    EVENT_STATE_CHANGE,
    AutomationEngine,
    EngineConfig,
    EngineHandle,
    EventCallback,
    MediaPayload,
)
from wpp_gateway.domain.errors import EngineError

_logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

QR_SELECTORS = (
    'canvas[aria-label="Scan this QR code to link a device!"]',
    'canvas[aria-label*="QR"]',
    'div[data-ref] canvas',
    '[data-testid="qrcode"] canvas',
)

LOGIN_MARKERS = (
    '[data-testid="chat-list"]',
    'div[aria-label="Chat list"]',
    "#side",
)

COMPOSE_SELECTORS = (
    'footer div[contenteditable="true"][role="textbox"]',
    'div[contenteditable="true"][data-tab="10"]',
    '#main footer div[contenteditable="true"]',
)

ATTACH_SELECTORS = (
    'span[data-icon="plus-rounded"]',
    'span[data-icon="attach-menu-plus"]',
    '[data-testid="clip"]',
    'button[aria-label="Attach"]',
)

SEND_SELECTORS = (
    'span[data-icon="send"]',
    '[data-testid="send"]',
    'button[aria-label="Send"]',
    'div[role="button"][aria-label="Send"]',
)

CAPTION_SELECTORS = (
    'div[aria-label="Add a caption"]',
    '[data-testid="media-caption-input-container"] [contenteditable="true"]',
    'div[contenteditable="true"][data-tab="6"]',
)

MENU_SELECTORS = (
    'span[data-icon="more-refreshed"]',
    'span[data-icon="menu"]',
    'div[aria-label="Menu"]',
)

LOGOUT_SELECTORS = (
    'div[aria-label="Log out"]',
    'li:has-text("Log out")',
)

LOGOUT_CONFIRM_SELECTORS = (
    'div[role="dialog"] button:has-text("Log out")',
    '[data-testid="popup-controls-ok"]',
)

INVALID_CHAT_SELECTOR = 'div[data-testid="popup-controls-ok"]'

# Media the photo/video picker accepts; everything else goes through the
# document picker.
_PICKER_INPUT = 'input[type="file"][accept*="image"]'
_DOCUMENT_INPUT = 'input[type="file"]:not([accept*="image"])'

_BINDING_NAME = "__gatewayEmit"

_EVENT_BRIDGE_SCRIPT = """
(() => {
  if (window.__gatewayBridgeInstalled) { return; }
  window.__gatewayBridgeInstalled = true;
  const emit = (event, payload) => {
    try { window.__gatewayEmit(event, payload); } catch (e) {}
  };
  const ackLevel = (icon) => {
    if (!icon) { return null; }
    const name = icon.getAttribute('data-icon') || '';
    const label = icon.getAttribute('aria-label') || '';
    if (name === 'msg-time') { return 0; }
    if (name === 'msg-check') { return 1; }
    if (name === 'msg-dblcheck') { return label.includes('Read') ? 3 : 2; }
    return null;
  };
  const chatTitle = () => {
    const header = document.querySelector('#main header span[dir="auto"]');
    return header ? header.textContent : null;
  };
  const describeRow = (node) => {
    const holder = node.closest('[data-id]') || node.querySelector('[data-id]');
    const copyable = node.querySelector('div.copyable-text');
    const text = node.querySelector('span.selectable-text');
    return {
      id: holder ? holder.getAttribute('data-id') : null,
      chat: chatTitle(),
      meta: copyable ? copyable.getAttribute('data-pre-plain-text') : null,
      body: text ? text.innerText : '',
    };
  };
  const observer = new MutationObserver((mutations) => {
    for (const mutation of mutations) {
      if (mutation.type === 'attributes') {
        const target = mutation.target;
        if (target.matches && target.matches('span[data-icon^="msg-"]')) {
          const row = target.closest('.message-out');
          if (row) {
            emit('ack', { ...describeRow(row), ack: ackLevel(target) });
          }
        }
        continue;
      }
      for (const node of mutation.addedNodes) {
        if (!(node instanceof HTMLElement)) { continue; }
        const incoming = node.matches('.message-in')
          ? node : node.querySelector('.message-in');
        if (incoming) {
          emit('message', describeRow(incoming));
        }
        const call = node.matches('[data-testid="incoming-call"]')
          ? node : node.querySelector('[data-testid="incoming-call"]');
        if (call) {
          emit('incoming_call', { text: call.innerText });
        }
      }
    }
  });
  const start = () => observer.observe(document.body, {
    childList: true,
    subtree: true,
    attributes: true,
    attributeFilter: ['data-icon', 'aria-label'],
  });
  if (document.body) { start(); }
  else { document.addEventListener('DOMContentLoaded', start); }
})();
"""

_SCRAPE_MESSAGES_SCRIPT = """
() => Array.from(document.querySelectorAll('#main div[role="row"]')).map((row) => {
  const holder = row.querySelector('[data-id]');
  const copyable = row.querySelector('div.copyable-text');
  const texts = Array.from(row.querySelectorAll('span.selectable-text'))
    .map((el) => el.innerText).filter((t) => t.trim());
  const isOut = row.querySelector('.message-out') !== null;
  const isIn = row.querySelector('.message-in') !== null;
  return {
    id: holder ? holder.getAttribute('data-id') : null,
    fromMe: isOut,
    isNotification: !isOut && !isIn,
    body: texts.join('\\n') || row.innerText.split('\\n')[0] || '',
    meta: copyable ? copyable.getAttribute('data-pre-plain-text') : null,
    hasMedia: row.querySelector('img[src^="blob:"], video') !== null,
  };
})
"""


@dataclass
class PlaywrightEngine(AutomationEngine):
    """Launches one persistent Chromium context per session.

    The context's user-data directory is `<credential root>/<session id>`,
    so WhatsApp Web's own storage doubles as the saved login: relaunching
    with the same directory resumes without a new QR scan.
    """

    poll_interval_seconds: float = 2.0
    navigation_timeout_ms: int = 60000
    user_agent: str = DEFAULT_USER_AGENT

    async def create(self, config: EngineConfig) -> "PlaywrightEngineHandle":
        """Launch the browser and resolve once the account is logged in."""
        user_data_dir = config.credential_root / config.session_id
        user_data_dir.mkdir(parents=True, exist_ok=True)
        playwright = await async_playwright().start()
        context: BrowserContext | None = None
        try:
            config.on_status("initBrowser")
            context = await playwright.chromium.launch_persistent_context(
                user_data_dir=str(user_data_dir),
                headless=config.headless,
                executable_path=config.executable_path or None,
                args=list(config.browser_args),
                user_agent=self.user_agent,
                viewport={"width": 1280, "height": 800},
                locale="en-US",
            )
            page = context.pages[0] if context.pages else await context.new_page()
            handle = PlaywrightEngineHandle(
                session_id=config.session_id,
                playwright=playwright,
                context=context,
                page=page,
                poll_interval_seconds=self.poll_interval_seconds,
            )
            await context.expose_binding(_BINDING_NAME, handle.receive_page_event)
            await context.add_init_script(_EVENT_BRIDGE_SCRIPT)
            config.on_status("initWhatsapp")
            await page.goto(
                WHATSAPP_WEB_URL,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms,
            )
            await self._wait_for_login(page, config)
        except BaseException:
            await _shutdown_browser(playwright, context)
            raise
        handle.start_watching()
        return handle

    async def _wait_for_login(self, page: Page, config: EngineConfig) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.auto_close_seconds
        last_qr: str | None = None
        scanned = False
        while True:
            try:
                if await is_logged_in(page):
                    config.on_status("isLogged")
                    return
                qr_code = await capture_qr_code(page)
            except PlaywrightError as exc:
                config.on_status("browserClose")
                raise EngineError(f"Browser closed during login: {exc}") from exc
            if qr_code is not None and qr_code != last_qr:
                if last_qr is None:
                    config.on_status("notLogged")
                last_qr = qr_code
                scanned = False
                config.on_qr(qr_code)
            elif qr_code is None and last_qr is not None and not scanned:
                scanned = True
                config.on_status("qrReadSuccess")
            if loop.time() >= deadline:
                config.on_status("autocloseCalled")
                raise EngineError("Auto close called: QR code was not scanned in time")
            await asyncio.sleep(self.poll_interval_seconds)


@dataclass
class PlaywrightEngineHandle(EngineHandle):
    """A logged-in WhatsApp Web page."""

    session_id: str
    playwright: Playwright
    context: BrowserContext
    page: Page
    poll_interval_seconds: float = 2.0
    _listeners: defaultdict[str, list[EventCallback]] = field(
        default_factory=lambda: defaultdict(list), init=False
    )
    _page_lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False)
    _watch_task: "asyncio.Task[None] | None" = field(default=None, init=False)
    _state: str | None = field(default=None, init=False)

    def on(self, event: str, callback: EventCallback) -> None:
        """Register an event listener."""
        self._listeners[event].append(callback)

    def receive_page_event(
        self, _source: object, event: str, payload: dict[str, object]
    ) -> None:
        """Entry point for events pushed by the in-page observer."""
        self._emit(event, payload)

    def _emit(self, event: str, payload: dict[str, object]) -> None:
        for callback in list(self._listeners.get(event, ())):
            try:
                callback(payload)
            except Exception:
                _logger.exception(
                    "Listener for %s failed on %s", event, self.session_id
                )

    def start_watching(self) -> None:
        """Start reporting connection state changes."""
        if self._watch_task is None:
            self._watch_task = asyncio.create_task(self._watch_state())

    async def _watch_state(self) -> None:
        while not self.page.is_closed():
            try:
                state = await read_connection_state(self.page)
            except PlaywrightError:
                break
            if state != self._state:
                self._state = state
                self._emit(EVENT_STATE_CHANGE, {"state": state})
            await asyncio.sleep(self.poll_interval_seconds)
        if self._state != "UNLAUNCHED":
            self._state = "UNLAUNCHED"
            self._emit(EVENT_STATE_CHANGE, {"state": "UNLAUNCHED"})

    async def is_connected(self) -> bool:
        """Return True while the chat list is visible."""
        if self.page.is_closed():
            raise EngineError("Browser page is closed")
        return await is_logged_in(self.page)

    async def logout(self) -> None:
        """Unlink this device through the WhatsApp Web menu."""
        async with self._page_lock:
            if not await _click_first(self.page, MENU_SELECTORS):
                raise EngineError("Menu button not found")
            if not await _click_first(self.page, LOGOUT_SELECTORS):
                raise EngineError("Log out entry not found")
            await _click_first(self.page, LOGOUT_CONFIRM_SELECTORS)

    async def close(self) -> None:
        """Stop watchers and release the browser."""
        if self._watch_task is not None:
            self._watch_task.cancel()
        await _shutdown_browser(self.playwright, self.context)

    async def send_text(self, target: str, body: str) -> dict[str, object]:
        """Type a message into the chat and press Enter."""
        async with self._page_lock:
            await self._open_chat(target)
            compose = await _first_present(self.page, COMPOSE_SELECTORS)
            if compose is None:
                raise EngineError("Message input not found")
            await compose.click()
            await compose.fill(body)
            await compose.press("Enter")
        return _sent_record(target, "chat")

    async def send_image(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send an image through the photo picker."""
        return await self._send_attachment(target, media, caption, "image")

    async def send_file(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send a document through the document picker."""
        return await self._send_attachment(target, media, caption, "document")

    async def send_voice(self, target: str, media: MediaPayload) -> dict[str, object]:
        """Send an audio file as a document attachment."""
        return await self._send_attachment(target, media, None, "ptt")

    async def send_video(
        self, target: str, media: MediaPayload, caption: str | None
    ) -> dict[str, object]:
        """Send a video through the photo picker."""
        return await self._send_attachment(target, media, caption, "video")

    async def get_messages_in_chat(
        self, chat_id: str, include_me: bool, include_notifications: bool
    ) -> list[dict[str, object]]:
        """Scrape the loaded history of a chat."""
        async with self._page_lock:
            await self._open_chat(chat_id)
            raw = await self.page.evaluate(_SCRAPE_MESSAGES_SCRIPT)
        return filter_messages(raw, chat_id, include_me, include_notifications)

    async def _send_attachment(
        self,
        target: str,
        media: MediaPayload,
        caption: str | None,
        kind: str,
    ) -> dict[str, object]:
        async with self._page_lock:
            await self._open_chat(target)
            if not await _click_first(self.page, ATTACH_SELECTORS):
                raise EngineError("Attach button not found")
            selector = _PICKER_INPUT if kind in {"image", "video"} else _DOCUMENT_INPUT
            file_input = self.page.locator(selector).first
            await file_input.set_input_files(
                files=[
                    {
                        "name": media.filename,
                        "mimeType": media.mimetype,
                        "buffer": media.data,
                    }
                ]
            )
            if caption:
                caption_box = await _first_present(self.page, CAPTION_SELECTORS)
                if caption_box is not None:
                    await caption_box.fill(caption)
            if not await _click_first(self.page, SEND_SELECTORS):
                raise EngineError("Send button not found")
        return _sent_record(target, kind)

    async def _open_chat(self, chat_id: str) -> None:
        phone = chat_phone(chat_id)
        await self.page.goto(
            f"{WHATSAPP_WEB_URL}send?phone={phone}", wait_until="domcontentloaded"
        )
        try:
            await self.page.wait_for_selector(
                f'{COMPOSE_SELECTORS[0]}, {INVALID_CHAT_SELECTOR}', timeout=30000
            )
        except PlaywrightError as exc:
            raise EngineError(f"Chat {chat_id} did not load") from exc
        popup = self.page.locator(INVALID_CHAT_SELECTOR)
        if await popup.count() > 0:
            await popup.first.click()
            raise EngineError(f"Invalid chat: {chat_id}")


async def is_logged_in(page: Page) -> bool:
    """Return True when any logged-in marker is present."""
    for selector in LOGIN_MARKERS:
        if await page.locator(selector).count() > 0:
            return True
    return False


async def capture_qr_code(page: Page) -> str | None:
    """Screenshot the pairing QR canvas as a PNG data URL."""
    for selector in QR_SELECTORS:
        element = page.locator(selector).first
        if await element.count() == 0:
            continue
        box = await element.bounding_box()
        if not box or box["width"] < 50 or box["height"] < 50:
            continue
        return to_data_url(await element.screenshot(), "image/png")
    return None


async def read_connection_state(page: Page) -> str:
    """Map the visible page to a connection state name."""
    if await is_logged_in(page):
        return "CONNECTED"
    if await capture_qr_code(page) is not None:
        return "UNPAIRED"
    return "OPENING"


def to_data_url(data: bytes, mimetype: str) -> str:
    """Encode bytes as a data URL."""
    return f"data:{mimetype};base64,{base64.b64encode(data).decode()}"


def chat_phone(chat_id: str) -> str:
    """Return the phone number part of a user chat id."""
    user, _, domain = chat_id.partition("@")
    if domain and domain != "c.us":
        raise EngineError(f"Only user chats can be opened, got {chat_id}")
    phone = user.lstrip("+").replace(" ", "").replace("-", "")
    if not phone.isdigit():
        raise EngineError(f"Invalid phone number: {chat_id}")
    return phone


def filter_messages(
    raw: list[dict[str, object]],
    chat_id: str,
    include_me: bool,
    include_notifications: bool,
) -> list[dict[str, object]]:
    """Shape scraped rows into message records."""
    messages = []
    for row in raw:
        from_me = bool(row.get("fromMe"))
        is_notification = bool(row.get("isNotification"))
        if from_me and not include_me:
            continue
        if is_notification and not include_notifications:
            continue
        meta = str(row.get("meta") or "")
        timestamp, sender = _parse_meta(meta)
        messages.append(
            {
                "id": row.get("id"),
                "chatId": chat_id,
                "fromMe": from_me,
                "type": "notification" if is_notification else "chat",
                "body": row.get("body") or "",
                "hasMedia": bool(row.get("hasMedia")),
                "sender": "me" if from_me else sender,
                "timestamp": timestamp,
            }
        )
    return messages


def _parse_meta(meta: str) -> tuple[str | None, str | None]:
    """Split WhatsApp's "[10:30, 02/02/2026] Name: " prefix."""
    if not meta.startswith("["):
        return None, None
    stamp, _, rest = meta[1:].partition("]")
    sender = rest.strip().rstrip(":").strip() or None
    return stamp.strip() or None, sender


def _sent_record(target: str, kind: str) -> dict[str, object]:
    return {
        "to": target,
        "type": kind,
        "ack": 0,
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }


async def _first_present(page: Page, selectors: tuple[str, ...]) -> Locator | None:
    for selector in selectors:
        locator = page.locator(selector)
        if await locator.count() > 0:
            return locator.first
    return None


async def _click_first(page: Page, selectors: tuple[str, ...]) -> bool:
    locator = await _first_present(page, selectors)
    if locator is None:
        return False
    await locator.click()
    return True


async def _shutdown_browser(
    playwright: Playwright, context: BrowserContext | None
) -> None:
    try:
        if context is not None:
            await context.close()
    finally:
        await playwright.stop()
