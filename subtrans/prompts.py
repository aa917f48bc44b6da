from __future__ import annotations

_PROMPT_ROMAJI = """
I'll provide you with a Japanese text, which is part of a conversation.
Your job is to convert the Japanese text to hiragana (with spaces) plus romaji plus its English translation.
If the provided text is not Japanese, return it as is.
The text is supposed to be used as subtitles, so make sure it follows a conversational flow.
Do not include the original Japanese text, only the Hiragana, Romaji and the English translation.
Example - INPUT = "私", OUTPUT = "わたし\\nwatashi\\nI".
Only output the translation for the latest sentence in the chat, don't repeat translations.
Always convert the entire text. Answer in plain text, without markdown or any other formatting.
"""

_PROMPT_PLAIN = """
I'll provide you with a Japanese text, which is part of a conversation.
Your job is to convert the Japanese text to hiragana (with spaces) plus its English translation.
If the provided text is not Japanese, return it as is.
The text is supposed to be used as subtitles, so make sure it follows a conversational flow.
Do not include the original Japanese text, only the Hiragana and the English translation.
Example - INPUT = "私", OUTPUT = "わたし\\nI".
Only output the translation for the latest sentence in the chat, don't repeat translations.
Always convert the entire text. Answer in plain text, without markdown or any other formatting.
"""

_BATCH_ADDENDUM = """
The input is a JSON array of subtitle lines. Reply with a JSON array of strings
holding exactly one converted entry per input line, in the same order.
"""


def build_system_prompt(*, romaji: bool = False, batch_mode: bool = False) -> str:
    prompt = _PROMPT_ROMAJI if romaji else _PROMPT_PLAIN
    if batch_mode:
        prompt += _BATCH_ADDENDUM
    return prompt.strip()
