from __future__ import annotations

import threading
from importlib import import_module
from pathlib import Path
from typing import Any

FIREBASE_APP_NAME = "yt-likes"


class FirebaseConfigurationError(Exception):
    pass


class FirebaseAppProvider:
    """Lazily initializes one named firebase_admin app shared by push and auth."""

    def __init__(
        self,
        *,
        credentials_path: Path,
        project_id: str | None,
        http_timeout_seconds: float,
        app_name: str = FIREBASE_APP_NAME,
    ) -> None:
        self._credentials_path = credentials_path
        self._project_id = project_id
        self._http_timeout_seconds = http_timeout_seconds
        self._app_name = app_name
        self._lock = threading.Lock()
        self._app: Any | None = None

    def get_app(self) -> Any:
        with self._lock:
            if self._app is not None:
                return self._app

            try:
                firebase_admin = import_module("firebase_admin")
                credentials_module = import_module("firebase_admin.credentials")
            except ImportError as exc:  # pragma: no cover - dependency controlled at runtime
                raise FirebaseConfigurationError("firebase-admin is not installed") from exc

            if not self._credentials_path.is_file():
                raise FirebaseConfigurationError(
                    f"Missing Firebase service account JSON: {self._credentials_path}"
                )

            options: dict[str, object] = {"httpTimeout": self._http_timeout_seconds}
            if self._project_id is not None:
                options["projectId"] = self._project_id

            try:
                self._app = firebase_admin.get_app(self._app_name)
            except ValueError:
                certificate = credentials_module.Certificate(str(self._credentials_path))
                self._app = firebase_admin.initialize_app(
                    certificate,
                    options,
                    name=self._app_name,
                )
            return self._app
