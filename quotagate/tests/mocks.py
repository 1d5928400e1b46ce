from datetime import datetime, timezone

from quotagate.models.plan import FeatureKind


FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

TEST_FEATURES = {
    "job_posts": {"name": "Job posts", "kind": FeatureKind.QUOTA, "unit": "post"},
    "ai_screenings": {"name": "AI candidate screenings", "kind": FeatureKind.QUOTA, "unit": "screening"},
    "cv_builder": {"name": "CV builder", "kind": FeatureKind.TOGGLE},
    "talent_search": {"name": "Talent pool search", "kind": FeatureKind.TOGGLE},
    "seo_generation": {"name": "AI SEO generation", "kind": FeatureKind.METERED, "unit": "generation"},
    "legacy_credits": {"name": "Legacy credits", "kind": "TIERED"},
}

TEST_PLANS = {
    "individual-free": {
        "product": "individual",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 10},
            "ai_screenings": {"enabled": True, "monthly_cap": 20},
            "cv_builder": {"enabled": True},
            "talent_search": {"enabled": False},
            "seo_generation": {"enabled": True, "overage_unit_cents": 150},
            "legacy_credits": {"enabled": True},
        },
    },
    "individual-starter": {
        "product": "individual",
        "tier": "starter",
        "interval": "monthly",
        "price_cents": 4900,
        "entitlements": {
            "ai_screenings": {"enabled": True, "monthly_cap": 5},
        },
    },
    "individual-pro-annual": {
        "product": "individual",
        "tier": "pro",
        "interval": "annual",
        "price_cents": 149900,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 100},
            "ai_screenings": {"enabled": True, "monthly_cap": 500},
            "talent_search": {"enabled": True},
        },
    },
    "individual-weekly": {
        "product": "individual",
        "tier": "trial",
        "interval": "weekly",
        "price_cents": 0,
        "entitlements": {},
    },
    "recruiter-free": {
        "product": "recruiter",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 3},
        },
    },
    "corporate-free": {
        "product": "corporate",
        "tier": "free",
        "interval": "monthly",
        "price_cents": 0,
        "entitlements": {
            "job_posts": {"enabled": True, "monthly_cap": 2},
        },
    },
}


class RecordingNotifier:
    """Notifier double that keeps every notice it was given."""

    def __init__(self, fail: bool = False):
        self.notices = []
        self.fail = fail

    def plan_selected(self, notice):
        self.notices.append(notice)
        if self.fail:
            raise RuntimeError("mail server down")
