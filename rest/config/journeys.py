"""Catalog of the product journeys tracked as conversion funnels."""

from rest.config.metrics import JourneyDefinition

JOURNEYS: dict[str, JourneyDefinition] = {
    journey.id: journey
    for journey in [
        JourneyDefinition(
            id="boreal-onboarding",
            name="Boreal Onboarding",
            description="Signup through first deployment and domain configuration",
            product="boreal",
            events=[
                "boreal_signup",
                "boreal_project_created",
                "boreal_first_deployment",
                "boreal_domain_configured",
            ],
            expected_duration="2 hours",
            success_criteria="Domain configured within 24 hours of signup",
        ),
        JourneyDefinition(
            id="boreal-activation",
            name="Boreal Activation",
            description="Account creation through production traffic",
            product="boreal",
            events=[
                "boreal_account_created",
                "boreal_environment_setup",
                "boreal_app_deployed",
                "boreal_production_traffic",
            ],
            expected_duration="1 day",
            success_criteria="Production traffic within 3 days",
        ),
        JourneyDefinition(
            id="boreal-retention",
            name="Boreal Retention",
            description="Activity over the first three months after deploying",
            product="boreal",
            events=[
                "boreal_first_deploy",
                "boreal_week_1_activity",
                "boreal_week_4_activity",
                "boreal_month_3_active",
            ],
            expected_duration="3 months",
            success_criteria="Still active after 3 months",
        ),
        JourneyDefinition(
            id="moosestack-discovery",
            name="Moosestack Discovery",
            description="Documentation through installation",
            product="moosestack",
            events=[
                "moosestack_docs_landing",
                "moosestack_docs_read",
                "moosestack_install_viewed",
                "moosestack_installed",
            ],
            expected_duration="1 hour",
            success_criteria="Installs after viewing documentation",
        ),
        JourneyDefinition(
            id="moosestack-first-value",
            name="Moosestack First Value",
            description="Installation through a running dev server",
            product="moosestack",
            events=[
                "moosestack_installed",
                "moosestack_init_project",
                "moosestack_first_build",
                "moosestack_dev_server",
            ],
            expected_duration="30 minutes",
            success_criteria="Dev server started within 1 hour of installing",
        ),
        JourneyDefinition(
            id="moosestack-adoption",
            name="Moosestack Adoption",
            description="First project through production builds and repeat usage",
            product="moosestack",
            events=[
                "moosestack_first_project",
                "moosestack_feature_used",
                "moosestack_production_build",
                "moosestack_repeat_usage",
            ],
            expected_duration="1 week",
            success_criteria="Builds for production and keeps using it",
        ),
    ]
}

EVENT_LABELS = {
    "boreal_signup": "Sign Up",
    "boreal_project_created": "Project Created",
    "boreal_first_deployment": "First Deployment",
    "boreal_domain_configured": "Domain Configured",
    "boreal_account_created": "Account Created",
    "boreal_environment_setup": "Environment Setup",
    "boreal_app_deployed": "App Deployed",
    "boreal_production_traffic": "Production Traffic",
    "boreal_first_deploy": "First Deploy",
    "boreal_week_1_activity": "Week 1 Activity",
    "boreal_week_4_activity": "Week 4 Activity",
    "boreal_month_3_active": "Month 3 Active",
    "moosestack_docs_landing": "Docs Landing",
    "moosestack_docs_read": "Docs Read",
    "moosestack_install_viewed": "Install Viewed",
    "moosestack_installed": "Installed",
    "moosestack_init_project": "Init Project",
    "moosestack_first_build": "First Build",
    "moosestack_dev_server": "Dev Server Started",
    "moosestack_first_project": "First Project",
    "moosestack_feature_used": "Feature Used",
    "moosestack_production_build": "Production Build",
    "moosestack_repeat_usage": "Repeat Usage",
}


def get_journey(journey_id: str) -> JourneyDefinition | None:
    return JOURNEYS.get(journey_id)


def list_journeys(product: str | None = None) -> list[JourneyDefinition]:
    """All journeys, or those of one product, in catalog order."""
    return [j for j in JOURNEYS.values() if product is None or j.product == product]


def event_label(event_name: str) -> str:
    """Human-readable step label; unknown events are shown as-is."""
    return EVENT_LABELS.get(event_name, event_name)
