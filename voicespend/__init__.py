"""VoiceSpend: учёт расходов голосом и текстом в Telegram."""
