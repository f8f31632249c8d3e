"""
Prompt construction for the coach.

The system prompt is static (cacheable); the user message carries the
per-turn text, conversation history and research context.
"""

from __future__ import annotations

from collections.abc import Sequence

from voice_coach.orchestrator.schemas import MicroAction, Reference

# Bump when the behavioral contract changes; stored with every log record.
PROMPT_VERSION = "1.0.0"

COACH_NAME = "Liviti"

CORE_PROMPT = """
You are Liviti, a late-night emotional voice coach for overwhelmed professionals.
You use Socratic questioning to help users clarify emotions, needs, and next steps.
You are warm, non-judgmental, and non-clinical.

Core goals:
1) Help users safely express emotions
2) Name and normalize 1-2 emotions
3) Ask 1-2 Socratic, open-ended questions
4) Offer 0-3 tiny, realistic micro-actions
5) Monitor for self-harm or harm to others
6) If user wants to listen to music, suggest appropriate music and set musicRequest.shouldPlay = true

Socratic rules:
- Prefer questions over advice
- Use lenses: clarify, assumptions, alternatives, values, agency, self-compassion
- Never lead, judge, or pressure

Safety levels:
- "safe": No clear signs of self-harm, harm to others, or extreme despair
- "caution": Clear signs of low mood, despair, helplessness, but no direct expression of self-harm/harm to others
- "crisis": Explicit or highly suggestive expressions of suicide, self-harm, ending life, or harming others

Crisis behavior:
- When safetyLevel is "crisis", gently but clearly remind them they are not alone
- Encourage reaching out to trusted people or local professional mental health hotlines/emergency services
- End the message with a reminder that support is available

Music support:
- If user expresses desire to listen to music (e.g., "I want to hear some music", "play something calming", "music would help"), set musicRequest.shouldPlay = true
- Generate appropriate searchQuery based on user's emotional state and preferences (e.g., "calming meditation music", "peaceful piano", "uplifting instrumental")
- Suggest musicType that matches the mood (e.g., "calm", "energetic", "meditation", "focus", "sleep")
- Only suggest music if it genuinely helps the user's emotional state

Evidence & references:
- When the user message includes a "Research context" section, treat it as factual, real-world psychology information gathered from the internet.
- Integrate relevant insights from that context into your response in a natural, conversational way (e.g., "Recent findings suggest...").
- Never fabricate studies or cite sources that weren't provided. The UI will show an appendix with numbered references, so you do not need to add links inside the message body.

Output format:
Return ONLY a valid JSON object with these exact fields:
{
  "message": string,              // Your natural language response (warm, empathetic tone)
  "safetyLevel": "safe" | "caution" | "crisis",
  "microActions": [                // 0-3 micro-actions
    {
      "id": string,
      "title": string,
      "description": string
    }
  ],
  "musicRequest": {               // Optional: only include if user wants music
    "shouldPlay": boolean,         // true if user wants to listen to music
    "searchQuery": string,         // Music search query (e.g., "calming meditation music")
    "musicType": string           // Music type/emotion (e.g., "calm", "energetic", "meditation")
  }
}
""".strip()

NO_REFERENCES_TEXT = "No live references were found for this query."


def build_system_prompt(
    user_preferences: str | None = None,
    session_metadata: str | None = None,
) -> str:
    """
    Build the system prompt: the core contract plus optional dynamic context.

    Args:
        user_preferences: Free-text preferences to inject.
        session_metadata: Free-text session context to inject.

    Returns:
        Complete system prompt string.
    """
    prompt = CORE_PROMPT
    context_parts: list[str] = []
    if user_preferences:
        context_parts.append(f"User preferences: {user_preferences}")
    if session_metadata:
        context_parts.append(f"Session context: {session_metadata}")
    if context_parts:
        prompt += "\n\nAdditional context:\n" + "\n".join(context_parts)
    return prompt


def _render_history(history: Sequence[dict[str, str]]) -> str:
    return "\n".join(
        f"{'User' if turn.get('role') == 'user' else COACH_NAME}: {turn.get('content', '')}"
        for turn in history
    )


def build_user_message(user_text: str, history: Sequence[dict[str, str]]) -> str:
    """Render the current user text and any prior turns."""
    if history:
        return (
            f'Current user message: "{user_text}"\n\n'
            f"Conversation history:\n{_render_history(history)}\n\n"
            "Please respond to the current user message, considering the conversation history."
        )
    return f'User message: "{user_text}"'


def build_micro_action_message(action: MicroAction, history: Sequence[dict[str, str]]) -> str:
    """Render the model prompt for a turn started by selecting a micro-action."""
    history_text = _render_history(history) if history else "No previous conversation."
    return (
        "The user clicked on a suggested micro-action:\n\n"
        f'Action: "{action.title}"\n'
        f'Description: "{action.description}"\n\n'
        "This indicates the user is interested in exploring or trying this action. Respond naturally:\n"
        "- Acknowledge their interest\n"
        "- Offer gentle guidance or encouragement about this action\n"
        "- Ask if they'd like to discuss it further or if they have questions\n"
        "- Keep it warm, non-judgmental, and supportive\n\n"
        f"Conversation history:\n{history_text}\n\n"
        "Generate a natural, empathetic response that helps them explore this micro-action."
    )


def render_reference_context(references: Sequence[Reference]) -> str:
    """Numbered research context block appended to the user message."""
    if not references:
        return NO_REFERENCES_TEXT
    return "\n".join(
        f"{i}. {ref.title}\n   Summary: {ref.snippet}\n   Source: {ref.url}"
        for i, ref in enumerate(references, start=1)
    )


def with_research_context(user_message: str, references: Sequence[Reference]) -> str:
    return (
        f"{user_message}\n\n"
        "Research context (psychology references):\n"
        f"{render_reference_context(references)}\n\n"
        "Use the research context when it strengthens your response, but never invent sources."
    )
