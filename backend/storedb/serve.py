# backend/storedb/serve.py
"""
Production entrypoint for the API.

HOST, PORT, LOG_LEVEL and RELOAD configure uvicorn. TLS is enabled when
SSL_CERTFILE / SSL_KEYFILE (and optionally SSL_KEYFILE_PASSWORD) are set.
"""

import os
from typing import Dict

import uvicorn

_SSL_ENV = {
    "ssl_certfile": "SSL_CERTFILE",
    "ssl_keyfile": "SSL_KEYFILE",
    "ssl_keyfile_password": "SSL_KEYFILE_PASSWORD",
}


def _env_flag(name: str) -> bool:
    return os.getenv(name, "false").strip().lower() in {"1", "true", "yes", "on"}


def _ssl_options() -> Dict[str, str]:
    return {option: os.environ[env] for option, env in _SSL_ENV.items() if os.getenv(env)}


def main() -> None:
    uvicorn.run(
        "storedb.main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        reload=_env_flag("RELOAD"),
        log_level=os.getenv("LOG_LEVEL", "info"),
        proxy_headers=True,
        forwarded_allow_ips=os.getenv("FORWARDED_ALLOW_IPS", "*"),
        **_ssl_options(),
    )


if __name__ == "__main__":
    main()
