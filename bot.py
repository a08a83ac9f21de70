"""
Usage (local):
  export BOT_TOKEN="..."
  export BOT_USERNAME="my_tiktok_bot"
  python bot.py
"""

from tiktok_bot.bot import main

if __name__ == "__main__":
    main()
