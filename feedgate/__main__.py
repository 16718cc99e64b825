"""python -m feedgate → serve the gateway with uvicorn."""

import uvicorn

from feedgate.core.config import PORT

if __name__ == "__main__":
    uvicorn.run("feedgate.main:app", host="0.0.0.0", port=PORT)
