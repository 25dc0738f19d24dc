"""Fixed prompts sent to the model by the engine itself.

Provides the connection test prompt, the prompt used to provoke a model
download, and a factory for the prompt-enhancement meta-prompt.
"""

# Round-trip prompt used by ModelClient.test_connection()
CONNECTION_TEST_PROMPT = "Say 'Hello, AI is working!'"

# First prompt of the throwaway session created by ModelClient.trigger_download()
DOWNLOAD_TRIGGER_PROMPT = "test"


def get_enhancement_prompt(original_prompt: str) -> str:
    """Generate the meta-prompt asking the model to rewrite a recipe prompt.

    The rules force the rewritten prompt to keep (or gain) a ``{user_input}``
    slot so it stays usable as a recipe template.

    Args:
        original_prompt: Prompt written by the user.

    Returns:
        str: Meta-prompt ending with "Enhanced prompt:".
    """
    return f"""You are an expert prompt engineer. Your task is to improve the following user prompt to make it more effective, clear, and specific while maintaining its original intent.

IMPORTANT RULES:
1. Preserve the original intent and purpose of the prompt
2. If the prompt contains placeholders like {{user_input}}, {{input}}, or similar, keep them exactly as they are
3. If the prompt does NOT contain any placeholder for user input, you MUST add {{user_input}} in the appropriate place where the user's input should be inserted
4. Make the prompt more specific and actionable
5. Add context and constraints that will improve results
6. Use clear, direct language
7. Structure the prompt for better AI understanding
8. Keep the enhanced prompt concise but comprehensive
9. Do not change the core functionality or expected output format
10. ALWAYS ensure the enhanced prompt includes {{user_input}} placeholder for user input

Original prompt to enhance:
"{original_prompt}"

Enhanced prompt:"""
