from __future__ import annotations

import uvicorn

from school_api import config

if __name__ == "__main__":
    uvicorn.run(
        "school_api.main:app",
        host="0.0.0.0",
        port=config.PORT,
        reload=False,
    )
