#!/usr/bin/env python3
"""
Language Quiz Bot - Main Entry Point

This script runs the Discord language quiz bot. Configure your bot token in
config.json or set the DISCORD_BOT_TOKEN environment variable.

Usage:
    python main.py [path/to/config.json]

Configuration:
    1. Copy config.example.json to config.json and set your Discord bot token
    2. Or set DISCORD_BOT_TOKEN environment variable
    3. Point quiz.api_endpoint at the quiz generator service, or set
       quiz.question_source to "file" to play from local question banks

Environment Variables:
    DISCORD_BOT_TOKEN: Your Discord bot token (overrides config.json)
"""

import asyncio
import sys
import os
import json
import logging
from pathlib import Path


def load_config(config_path="config.json"):
    """Load configuration from a JSON file."""
    config_path = Path(config_path)

    if not config_path.exists():
        print(f"❌ Error: {config_path} not found!")
        print("Please copy config.example.json to config.json and configure your Discord bot token.")
        sys.exit(1)

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        print(f"❌ Error: Invalid JSON in {config_path}: {e}")
        sys.exit(1)
    except OSError as e:
        print(f"❌ Error loading {config_path}: {e}")
        sys.exit(1)


def get_bot_token(config):
    """Get bot token from environment variable or config file."""
    # Environment variable takes precedence
    token = os.getenv('DISCORD_BOT_TOKEN')
    if token:
        return token

    token = config.get('bot', {}).get('token')
    if not token or token == "YOUR_DISCORD_BOT_TOKEN_HERE":
        print("❌ Error: Discord bot token not configured!")
        print("Either:")
        print("  1. Set DISCORD_BOT_TOKEN environment variable")
        print("  2. Update the 'token' field in config.json")
        sys.exit(1)

    return token


def setup_logging_from_config(config):
    """Set up logging based on configuration."""
    log_config = config.get('logging', {})
    log_level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
    log_directory = Path(log_config.get('log_directory', './logs/'))

    log_directory.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(log_directory / "bot.log", encoding='utf-8')
        ]
    )

    # Reduce discord.py noise
    logging.getLogger('discord').setLevel(logging.WARNING)
    logging.getLogger('discord.http').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


async def run_bot_with_config(config_path="config.json"):
    """Run the bot with configuration."""
    config = load_config(config_path)
    setup_logging_from_config(config)
    token = get_bot_token(config)

    from langquiz.bot import run_bot
    await run_bot(token, config)


if __name__ == "__main__":
    try:
        print("🤖 Starting Language Quiz Bot...")
        asyncio.run(run_bot_with_config(*sys.argv[1:2]))
    except KeyboardInterrupt:
        print("\n👋 Bot stopped by user")
