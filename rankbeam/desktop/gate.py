import enum
import logging
import threading
from collections.abc import Callable
from functools import partial
from typing import Protocol

import httpx

from rankbeam.desktop.client import InvalidLicense, LicenseClient, LicenseClientError, UnauthorizedToken
from rankbeam.desktop.fingerprint import FingerprintUnavailable, machine_fingerprint
from rankbeam.desktop.storage import EmptyLicenseKey, LicenseStorage

logger = logging.getLogger(__name__)

VALIDATION_TIMEOUT_SECONDS = 10.0
VALIDATING_MESSAGE = "Validating your license with the license server…"
SUCCESS_MESSAGE = "License activated."
PERSIST_ERROR_TITLE = "License Activation"


class GateState(str, enum.Enum):
    idle = "idle"
    validating = "validating"
    awaiting_input = "awaiting_input"
    success = "success"
    error = "error"


class GateView(Protocol):
    def render(self, state: GateState, message: str) -> None:
        ...

    def show_error(self, title: str, message: str) -> None:
        ...


def run_in_thread(fn: Callable[[], None]) -> None:
    threading.Thread(target=fn, name="license-gate", daemon=True).start()


def call_directly(fn: Callable[[], None]) -> None:
    fn()


def activation_error_message(exc: BaseException) -> str:
    if isinstance(exc, FileNotFoundError):
        return "License key not found. Paste your license key to activate this machine."
    if isinstance(exc, EmptyLicenseKey):
        return "The stored license key is empty. Paste a valid key to continue."
    if isinstance(exc, InvalidLicense):
        return "The license key on this machine is invalid or expired. Contact support to refresh it."
    if isinstance(exc, UnauthorizedToken):
        return "The installer token configured for this app is not authorized. Check LICENSE_API_TOKEN."
    if isinstance(exc, LicenseClientError) and isinstance(exc.__cause__, httpx.TimeoutException):
        return "Activation timed out. Check your connection and try again."
    if isinstance(exc, ValueError):
        return "The stored license could not be read. Paste your license key to continue."
    return f"Unable to validate license: {exc}"


def persist_error_message(exc: BaseException) -> str:
    if isinstance(exc, PermissionError):
        return "Activation failed: insufficient permissions to store the license key on this device."
    return f"Activation failed: {exc}"


class ActivationGate:
    """Startup license check that a desktop shell renders.

    Network work runs through ``run_in_background``; every state change a view
    sees is delivered through ``post_to_ui``. ``on_success`` fires at most once
    and only after the validated envelope was written to storage.
    """

    def __init__(
        self,
        client: LicenseClient,
        storage: LicenseStorage,
        view: GateView,
        on_success: Callable[[], None],
        *,
        fingerprint_provider: Callable[[], str] = machine_fingerprint,
        post_to_ui: Callable[[Callable[[], None]], None] | None = None,
        run_in_background: Callable[[Callable[[], None]], None] = run_in_thread,
        on_quit: Callable[[], None] | None = None,
        timeout: float = VALIDATION_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.storage = storage
        self.view = view
        self.on_success = on_success
        self.on_quit = on_quit
        self.fingerprint_provider = fingerprint_provider
        self.post_to_ui = post_to_ui or call_directly
        self.run_in_background = run_in_background
        self.timeout = timeout

        self._lock = threading.Lock()
        self._state = GateState.idle
        self._message = ""
        self._fingerprint: str | None = None
        self._closed = False
        self._succeeded = False

    @property
    def state(self) -> GateState:
        with self._lock:
            return self._state

    @property
    def message(self) -> str:
        with self._lock:
            return self._message

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def _transition(self, state: GateState, message: str = "") -> None:
        with self._lock:
            if self._closed:
                return
            self._state = state
            self._message = message
        self.view.render(state, message)

    def _enter_validating(self, expected: GateState) -> bool:
        with self._lock:
            if self._closed or self._state is not expected:
                return False
            self._state = GateState.validating
            self._message = VALIDATING_MESSAGE
        self.view.render(GateState.validating, VALIDATING_MESSAGE)
        return True

    def start(self) -> None:
        try:
            self._fingerprint = self.fingerprint_provider()
        except (FingerprintUnavailable, OSError) as exc:
            logger.error("machine fingerprint unavailable: %s", exc)
            self._transition(GateState.error, f"Unable to identify this machine: {exc}")
            return

        try:
            envelope = self.storage.load()
        except (FileNotFoundError, EmptyLicenseKey) as exc:
            self._transition(GateState.awaiting_input, activation_error_message(exc))
            return
        except (OSError, ValueError) as exc:
            logger.warning("stored license unreadable: %s", exc)
            self._transition(GateState.awaiting_input, activation_error_message(exc))
            return

        if self._enter_validating(GateState.idle):
            self.run_in_background(partial(self._validate, envelope.license_key, False))

    def can_activate(self, text: str) -> bool:
        with self._lock:
            return not self._closed and self._state is GateState.awaiting_input and bool(text.strip())

    def activate(self, text: str) -> bool:
        """Validate a key typed by the user. Returns ``False`` when the tap was dropped."""
        key = text.strip()
        if not key or self._fingerprint is None:
            return False
        if not self._enter_validating(GateState.awaiting_input):
            return False
        self.run_in_background(partial(self._validate, key, True))
        return True

    def quit(self) -> None:
        """Close the window. A validation still in flight is cancelled and its result dropped."""
        with self._lock:
            self._closed = True
            in_flight = self._state is GateState.validating
        if in_flight:
            self.client.close()
        if self.on_quit is not None:
            self.on_quit()

    def _validate(self, key: str, user_initiated: bool) -> None:
        try:
            envelope = self.client.validate_license(key, self._fingerprint, timeout=self.timeout)
        except LicenseClientError as exc:
            logger.info("license validation failed: %s", exc)
            self.post_to_ui(partial(self._validation_failed, exc))
            return

        if self.closed:
            return
        try:
            self.storage.save(envelope)
        except (OSError, ValueError) as exc:
            if user_initiated:
                logger.error("could not store activated license: %s", exc)
                self.post_to_ui(partial(self._persist_failed, exc))
                return
            logger.warning("could not refresh stored license: %s", exc)
        self.post_to_ui(self._succeed)

    def _validation_failed(self, exc: LicenseClientError) -> None:
        self._transition(GateState.awaiting_input, activation_error_message(exc))

    def _persist_failed(self, exc: BaseException) -> None:
        message = persist_error_message(exc)
        with self._lock:
            if self._closed:
                return
            self._state = GateState.error
            self._message = message
        self.view.render(GateState.error, message)
        self.view.show_error(PERSIST_ERROR_TITLE, message)

    def _succeed(self) -> None:
        with self._lock:
            if self._closed or self._succeeded:
                return
            self._succeeded = True
            self._state = GateState.success
            self._message = SUCCESS_MESSAGE
        self.view.render(GateState.success, SUCCESS_MESSAGE)
        self.on_success()
