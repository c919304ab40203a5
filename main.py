"""
Pomodoro Sync — Entry Point.

`python main.py` starts the Telegram bot.
`python main.py serve` starts the remote KV HTTP API.
"""

import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "serve":
        from src.server.kv_api import main
    else:
        from src.bot.telegram_bot import main
    main()
