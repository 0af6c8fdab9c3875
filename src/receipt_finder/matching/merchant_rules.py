"""
Merchant rule registry.

Maps a canonical merchant key to the vocabulary and sender domains that
merchant uses in its receipts. Read-only.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class MerchantRule:
    """Known keywords and sender domains for one merchant."""

    name: str
    keywords: tuple[str, ...]
    domains: tuple[str, ...] = ()

    def find_keyword(self, *texts: str) -> str | None:
        """Return the first registered keyword present in any of the texts."""
        lowered = [t.lower() for t in texts if t]
        for keyword in self.keywords:
            needle = keyword.lower()
            if any(needle in text for text in lowered):
                return keyword
        return None

    def find_domain(self, sender: str) -> str | None:
        sender_lower = sender.lower()
        for domain in self.domains:
            if domain in sender_lower:
                return domain
        return None


MERCHANT_RULES: dict[str, MerchantRule] = {
    "uber": MerchantRule(
        name="Uber",
        keywords=("Trip", "Ride", "Driver", "Uber One", "Uber Eats"),
        domains=("uber.com", "uber.com.br"),
    ),
    "finnair": MerchantRule(
        name="Finnair",
        keywords=(
            "Flight",
            "Ticket",
            "Booking Ref",
            "Matkustaja",
            "Lento",
            "Varausvahvistus",
            "E-ticket",
            "Eticket",
            "Receipt",
            "Kuitti",
            "Bokning",
        ),
        domains=("finnair.com", "finnair.fi", "email.finnair.com"),
    ),
    "github": MerchantRule(
        name="GitHub",
        keywords=("Repository", "Actions", "Copilot", "Sponsor", "Git"),
        domains=("github.com",),
    ),
    "openai": MerchantRule(
        name="OpenAI",
        keywords=("API", "ChatGPT", "Token", "Subscription", "DALL·E"),
        domains=("openai.com",),
    ),
    "bolt": MerchantRule(
        name="Bolt",
        keywords=("Ride", "Trip", "Scooter", "Food", "Delivery"),
        domains=("bolt.eu",),
    ),
    "wolt": MerchantRule(
        name="Wolt",
        keywords=("Delivery", "Order", "Courier", "Kuljetus"),
        domains=("wolt.com",),
    ),
    "spotify": MerchantRule(
        name="Spotify",
        keywords=("Premium", "Music", "Individual", "Duo", "Family"),
        domains=("spotify.com",),
    ),
    "adobe": MerchantRule(
        name="Adobe",
        keywords=("Creative Cloud", "Acrobat", "Photoshop", "Lightroom", "Substance"),
        domains=("adobe.com",),
    ),
    "apple": MerchantRule(
        name="Apple",
        keywords=("App Store", "iTunes", "iCloud", "Subscription", "Apple Music"),
        domains=("apple.com", "email.apple.com"),
    ),
    "amazon": MerchantRule(
        name="Amazon",
        keywords=("Order", "Shipment", "Delivered", "Prime", "Marketplace"),
        domains=(
            "amazon.com",
            "amazon.de",
            "amazon.co.uk",
            "amazon.fr",
            "amazon.it",
            "amazon.es",
        ),
    ),
    "google": MerchantRule(
        name="Google",
        keywords=("Google Ads", "Google Cloud", "Workspace", "G Suite", "Play Console"),
        domains=("google.com",),
    ),
    "meta": MerchantRule(
        name="Meta",
        keywords=("Facebook Ads", "Instagram Ads", "Meta Ads", "Meta for Business"),
        domains=("facebook.com", "meta.com"),
    ),
    "linkedin": MerchantRule(
        name="LinkedIn",
        keywords=("Premium", "Sales Navigator", "Recruiter", "Learning"),
        domains=("linkedin.com",),
    ),
    "microsoft": MerchantRule(
        name="Microsoft",
        keywords=("Azure", "Microsoft 365", "Office 365", "Xbox", "OneDrive"),
        domains=("microsoft.com",),
    ),
    "slack": MerchantRule(
        name="Slack",
        keywords=("Workspace", "Pro", "Business+", "Enterprise"),
        domains=("slack.com",),
    ),
    "zoom": MerchantRule(
        name="Zoom",
        keywords=("Meeting", "Webinar", "Recording", "Pro", "Business"),
        domains=("zoom.us",),
    ),
    "vr": MerchantRule(
        name="VR",
        keywords=(
            "Matkustaja",
            "Lippu",
            "Varaus",
            "Juna",
            "Pendolino",
            "InterCity",
            "Resenär",
            "Biljett",
            "Bokning",
            "Tåg",
            "Plats",
            "Matkalippu",
            "Kiitos",
            "Tilausvahvistus",
        ),
        domains=("vr.fi", "shop.vr.fi"),
    ),
}


def get_merchant_rule(merchant_name: str) -> MerchantRule | None:
    """Look up the rule for a merchant name.

    Tries the exact lowercase key first, then any rule whose name is
    contained in the merchant name ("Uber BV" -> uber).
    """
    lower = merchant_name.lower().strip()
    if lower in MERCHANT_RULES:
        return MERCHANT_RULES[lower]

    for rule in MERCHANT_RULES.values():
        if rule.name.lower() in lower:
            return rule
    return None
