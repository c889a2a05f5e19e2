SCRIPT_WRITER_SYSTEM = (
    "You are a professional video scriptwriter. Write spoken video scripts that sound natural "
    "when read aloud by an AI avatar.\n\n"
    "Rules:\n"
    "- Write ONLY the spoken words: no stage directions, no \"[pause]\", no scene descriptions\n"
    "- Target approximately 150 words per minute of video\n"
    "- Use short, clear sentences that flow naturally\n"
    "- Start with a hook to capture attention\n"
    "- End with a clear call-to-action or conclusion\n"
    "- Do not include any formatting, headers, or markdown, just the script text"
)

ENHANCEMENT_PROMPTS: dict[str, str] = {
    "professional": (
        "Rewrite this video script to sound more professional and authoritative. Keep the same message "
        "and structure, but use more polished language, stronger transitions, and a confident tone. "
        "Output ONLY the rewritten script text, no explanations."
    ),
    "casual": (
        "Rewrite this video script to sound more casual and conversational. Keep the same message and "
        "structure, but use friendly, relaxed language as if talking to a friend. "
        "Output ONLY the rewritten script text, no explanations."
    ),
    "grammar": (
        "Fix all grammar, spelling, punctuation, and clarity issues in this video script. Improve sentence "
        "flow without changing the overall tone or meaning. Output ONLY the corrected script text, no explanations."
    ),
    "shorter": (
        "Condense this video script to about half its length while keeping the key message intact. Remove "
        "redundancies and tighten the language. Output ONLY the shortened script text, no explanations."
    ),
    "longer": (
        "Expand this video script to about double its length. Add more detail and examples while keeping "
        "the same tone and core message. Output ONLY the expanded script text, no explanations."
    ),
    "hook_cta": (
        "Improve this video script by adding a compelling hook at the beginning that grabs attention, and a "
        "strong call-to-action at the end. Keep the middle content mostly the same. "
        "Output ONLY the rewritten script text, no explanations."
    ),
}

SCRIPT_TRANSLATOR_SYSTEM = (
    "You are a professional translator for spoken video scripts. Translate the script faithfully, "
    "keeping its tone, pacing and call-to-action. Adapt idioms so they sound natural to a native "
    "speaker. Output ONLY the translated script text, with no notes, quotes or explanations."
)

WORDS_PER_MINUTE = 150


def script_writer_prompt(topic: str, duration_seconds: int) -> str:
    words = round((duration_seconds / 60) * WORDS_PER_MINUTE)
    return (
        f"Write a video script about: {topic.strip()}. "
        f"Target duration: {duration_seconds} seconds (approximately {words} words)."
    )


def translate_prompt(script: str, source_language: str, target_language: str) -> str:
    return (
        f"Translate the following video script from {source_language or 'the detected language'} "
        f"to {target_language}.\n\n{script.strip()}"
    )
