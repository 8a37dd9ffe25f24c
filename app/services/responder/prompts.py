# app/services/responder/prompts.py
"""
System prompt construction for the responder.

One prompt for every channel; only the formatting guidance differs, so a
contact gets consistent answers wherever they write from.
"""

from datetime import datetime

from app.models.domain.profile_domain import Channel, Profile

CHANNEL_GUIDANCE = {
    Channel.EMAIL: "You are replying by email. Write complete sentences and sign off politely.",
    Channel.CHAT: "You are replying in a website live chat. Keep answers short and conversational.",
    Channel.WHATSAPP: "You are replying on WhatsApp. Keep answers brief; avoid long paragraphs.",
    Channel.VOICE: "Your reply will be spoken aloud on a phone call. Avoid lists, links and symbols.",
}

SCHEDULING_INSTRUCTIONS = """### Scheduling
If the contact asks to schedule, book or arrange a meeting, call or appointment, include a
single JSON object on its own line, in addition to your reply, with exactly these keys:
{"is_scheduling_request": true, "date_time": "<ISO 8601 date-time>", "email": "<attendee email or empty>", "subject": "<short subject>", "duration_minutes": 30, "description": "<one line>"}
Use the contact's stated time; if they gave none, leave date_time empty. Never invent an email address.
Do not include the JSON object for any other kind of message."""


def _known_details(profile: Profile | None) -> str:
    if profile is None:
        return "Nothing is known about this contact yet."
    known = []
    if profile.name:
        known.append(f"name: {profile.name}")
    if profile.email:
        known.append(f"email: {profile.email}")
    if profile.phone:
        known.append(f"phone: {profile.phone}")
    if not known:
        return "Nothing is known about this contact yet."
    return "Known contact details: " + ", ".join(known) + "."


def _missing_details(profile: Profile | None) -> list[str]:
    if profile is None:
        return ["name", "email"]
    return [name for name in ("name", "email") if not getattr(profile, name)]


def build_system_prompt(
    channel: Channel,
    profile: Profile | None,
    now: datetime,
    business_name: str,
    assistant_name: str,
) -> str:
    missing = _missing_details(profile)
    ask = (
        f"If it fits naturally, ask for the contact's {' and '.join(missing)}; never ask twice in a row."
        if missing
        else "You already have the contact's details; do not ask for them again."
    )

    return f"""### Role
You are {assistant_name}, the receptionist for {business_name}. Answer questions about the business,
help with enquiries and arrange meetings. Do not say you are an AI or a language model.

### Channel
{CHANNEL_GUIDANCE[channel]}

### Contact
{_known_details(profile)}
{ask}

### Current time
{now.isoformat()}

{SCHEDULING_INSTRUCTIONS}
"""
