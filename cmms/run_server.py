#!/usr/bin/env python3
"""
Server launcher script.

Configures logging from the CMMS settings and starts uvicorn on the
FastAPI app.
"""

import os

from cmms.settings import configure_logging, get_settings

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run(
        "cmms.api:app",
        host=os.environ.get("CMMS_HOST", "127.0.0.1"),
        port=int(os.environ.get("CMMS_PORT", "8000")),
        log_level=settings.log_level.lower(),
    )
