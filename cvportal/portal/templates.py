"""Portal templates: defaults, selection and LLM-driven design customization."""
import json
import re
from typing import Any, Dict, Optional, Tuple, Union

import structlog

from cvportal import config
from cvportal.errors import TemplateCustomizationError, TemplateGenerationError
from cvportal.models import ParsedCV, PortalTemplate, PortalTheme, PortalUrls

logger = structlog.get_logger()

TECHNICAL_SKILL_MARKERS = ("javascript", "python", "react", "node")

_TEXT_COLORS = {"primary": "#1f2937", "secondary": "#6b7280", "muted": "#9ca3af"}
_BASE_TEMPLATE_CONFIG = {
    "supportedLanguages": ["en"],
    "defaultLanguage": "en",
    "mobileOptimization": "enhanced",
    "seo": {"sitemap": True},
}


def _theme(theme_id: str, name: str, primary: str, secondary: str, heading_font: str) -> PortalTheme:
    return PortalTheme(
        id=theme_id,
        name=name,
        colors={
            "primary": primary,
            "secondary": secondary,
            "background": "#ffffff",
            "text": dict(_TEXT_COLORS),
        },
        typography={
            "fontFamilies": {
                "heading": heading_font,
                "body": "Inter, sans-serif",
                "code": "JetBrains Mono, monospace",
            },
        },
    )


DEFAULT_TEMPLATES: Dict[str, PortalTemplate] = {
    template.id: template
    for template in (
        PortalTemplate(
            id="corporate-professional",
            name="Corporate Professional",
            description="Clean, corporate design perfect for business professionals",
            category="corporate_professional",
            theme=_theme("corporate-theme", "Corporate Professional", "#1e40af", "#64748b", "Inter, sans-serif"),
            config=dict(_BASE_TEMPLATE_CONFIG),
            required_sections=["hero", "about", "experience", "skills", "contact"],
            optional_sections=["education", "achievements", "certifications", "chat"],
        ),
        PortalTemplate(
            id="creative-portfolio",
            name="Creative Portfolio",
            description="Visual-focused design for creative professionals and artists",
            category="creative_portfolio",
            theme=_theme("creative-theme", "Creative Portfolio", "#8b5cf6", "#06b6d4", "Poppins, sans-serif"),
            config=dict(_BASE_TEMPLATE_CONFIG),
            required_sections=["hero", "about", "portfolio", "skills", "contact"],
            optional_sections=["experience", "testimonials", "blog", "chat"],
        ),
        PortalTemplate(
            id="technical-expert",
            name="Technical Expert",
            description="Developer-focused design with technical project showcases",
            category="technical_expert",
            theme=_theme("technical-theme", "Technical Expert", "#0f172a", "#475569", "JetBrains Mono, monospace"),
            config=dict(_BASE_TEMPLATE_CONFIG),
            required_sections=["hero", "about", "experience", "skills", "projects", "contact"],
            optional_sections=["education", "certifications", "publications", "chat"],
        ),
    )
}


def has_portfolio(profile: ParsedCV) -> bool:
    return bool(profile.projects) or bool(profile.custom_sections.get("portfolio"))


def has_technical_skills(profile: ParsedCV) -> bool:
    return any(
        marker in skill.lower()
        for skill in profile.skill_list()
        for marker in TECHNICAL_SKILL_MARKERS
    )


def select_template(profile: ParsedCV) -> PortalTemplate:
    """Pick a default template from the profile's content."""
    if has_portfolio(profile) and has_technical_skills(profile):
        template_id = "technical-expert"
    elif has_portfolio(profile):
        template_id = "creative-portfolio"
    else:
        template_id = "corporate-professional"
    return DEFAULT_TEMPLATES[template_id].model_copy(deep=True)


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Extract the first JSON object from model output.

    Handles markdown code fences and leading/trailing prose. Returns None if
    no parseable object is found.
    """
    code_block_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if code_block_match:
        text = code_block_match.group(1).strip()

    start_idx = text.find("{")
    if start_idx == -1:
        return None

    # Match braces from the first '{'
    brace_count = 0
    end_idx = start_idx
    for i in range(start_idx, len(text)):
        if text[i] == "{":
            brace_count += 1
        elif text[i] == "}":
            brace_count -= 1
            if brace_count == 0:
                end_idx = i + 1
                break

    if brace_count != 0:
        return None

    json_str = text[start_idx:end_idx]
    try:
        parsed = json.loads(json_str)
    except (json.JSONDecodeError, ValueError) as e:
        logger.warning("failed_to_parse_design_patch", error=str(e), text_preview=json_str[:100])
        return None

    return parsed if isinstance(parsed, dict) else None


class TemplateService:
    """Generates the portal template and, optionally, personalizes its design."""

    def __init__(self, llm=None, model: str = None):
        """Initialize the template service.

        Args:
            llm: Chat client used for design customization (None disables it)
            model: Chat model name (default from config)
        """
        self.llm = llm
        self.model = model or config.CHAT_MODEL

    def generate_template(
        self,
        profile: ParsedCV,
        urls: PortalUrls,
        requested: Union[PortalTemplate, str, None] = None,
    ) -> PortalTemplate:
        """Resolve the template for a portal and attach its links.

        Args:
            profile: Parsed CV
            urls: Portal URLs to embed into the template config
            requested: Explicit template (object or default template id)

        Raises:
            TemplateGenerationError: If the requested template is unknown or
                has no theme or sections
        """
        if requested is None:
            template = select_template(profile)
        elif isinstance(requested, str):
            if requested not in DEFAULT_TEMPLATES:
                raise TemplateGenerationError(
                    f"Unknown template '{requested}'",
                    details=f"available: {', '.join(sorted(DEFAULT_TEMPLATES))}",
                )
            template = DEFAULT_TEMPLATES[requested].model_copy(deep=True)
        else:
            template = requested.model_copy(deep=True)

        if not template.required_sections:
            raise TemplateGenerationError(f"Template '{template.id}' declares no sections")

        template.config = {**template.config, "links": urls.to_document()}

        logger.info(
            "template_generated",
            template_id=template.id,
            auto_selected=requested is None,
            name=profile.name,
        )
        return template

    async def customize_design(
        self, profile: ParsedCV, template: PortalTemplate
    ) -> Tuple[PortalTemplate, Dict[str, Any]]:
        """Ask the chat model for a theme/config/content patch and merge it.

        Unparseable model output keeps the template as is.

        Returns:
            (customized template, content customizations)

        Raises:
            TemplateCustomizationError: If the model call fails
        """
        if self.llm is None:
            logger.info("design_customization_skipped", reason="no_model_configured")
            return template, {}

        messages = [
            {
                "role": "system",
                "content": (
                    "You are an expert web portal designer. Create personalized content "
                    "and customizations for professional web portals based on CV data."
                ),
            },
            {"role": "user", "content": self._build_prompt(profile, template)},
        ]

        try:
            response = await self.llm.chat(messages, model=self.model, temperature=0.3)
        except Exception as e:
            raise TemplateCustomizationError(f"Design model call failed: {e}") from e

        patch = parse_json_object(response) or {}
        theme_patch = patch.get("theme") if isinstance(patch.get("theme"), dict) else {}
        config_patch = patch.get("config") if isinstance(patch.get("config"), dict) else {}
        content = patch.get("content") if isinstance(patch.get("content"), dict) else {}

        customized = template.model_copy(deep=True)
        if isinstance(theme_patch.get("colors"), dict):
            customized.theme.colors = {**customized.theme.colors, **theme_patch["colors"]}
        if isinstance(theme_patch.get("typography"), dict):
            customized.theme.typography = {**customized.theme.typography, **theme_patch["typography"]}
        # Links are derived from the portal URLs and never overridden by the model
        config_patch.pop("links", None)
        customized.config = {**customized.config, **config_patch}

        logger.info(
            "design_customized",
            template_id=template.id,
            patched=sorted(k for k in ("theme", "config", "content") if patch.get(k)),
        )
        return customized, content

    def _build_prompt(self, profile: ParsedCV, template: PortalTemplate) -> str:
        cv_json = json.dumps(profile.to_document(), indent=2)
        return f"""Create personalized customizations for a web portal template based on the following CV data:

CV Data:
{cv_json}

Template: {template.name} ({template.category})

Generate customizations for:
1. Color scheme and branding based on industry/profession
2. Content priorities and section ordering
3. Messaging and tone

Return as JSON with "theme" (colors, typography), "config" and "content" objects."""
