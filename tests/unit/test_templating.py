"""Unit tests for template rendering."""

from conftest import NOW, make_alert, make_template
from devflow_alerts.models import AlertContext
from devflow_alerts.templating import TEMPLATE_VARIABLES, TemplateRenderer


class TestTemplateRenderer:
    """Test placeholder substitution."""

    def test_substitution_is_exact(self):
        """Title and message are substituted literally."""
        template = make_template(body="{{alertTitle}}: {{alertMessage}}")
        alert = make_alert(title="X", message="Y")

        assert TemplateRenderer().render(template, alert).body == "X: Y"

    def test_subject_and_body_rendered(self):
        """Both subject and body are rendered."""
        template = make_template(subject="[{{severity}}] {{alertType}}", body="{{status}}")
        message = TemplateRenderer().render(template, make_alert())

        assert message.subject == "[high] quality_threshold"
        assert message.body == "active"

    def test_all_variables(self):
        """Every schema variable is provided."""
        alert = make_alert()
        variables = TemplateRenderer().build_variables(alert)

        assert set(variables) == set(TEMPLATE_VARIABLES)
        assert variables["alertId"] == alert.id
        assert variables["triggeredAt"] == NOW.isoformat()
        assert variables["userId"] == "user-1"
        assert variables["metricValues"] == "coverage: 0.42"
        assert variables["recommendations"] == "- Code Review Focus: Review the affected modules"

    def test_missing_context_defaults_to_unknown(self):
        """Absent user, team and project render as Unknown."""
        variables = TemplateRenderer().build_variables(make_alert(context=AlertContext()))

        assert variables["userId"] == "Unknown"
        assert variables["teamId"] == "Unknown"
        assert variables["projectId"] == "Unknown"
        assert variables["metricValues"] == ""

    def test_unknown_placeholders_left_alone(self):
        """Names outside the schema are not touched."""
        renderer = TemplateRenderer()
        assert renderer.render_text("{{nope}} {{ alertId }}", {"alertId": "1"}) == (
            "{{nope}} {{ alertId }}"
        )

    def test_values_are_not_reexpanded(self):
        """Placeholder text inside a value is emitted verbatim."""
        template = make_template(body="{{alertTitle}}")
        alert = make_alert(title="{{alertMessage}}", message="secret")

        assert TemplateRenderer().render(template, alert).body == "{{alertMessage}}"

    def test_repeated_placeholders(self):
        """Every occurrence of a placeholder is substituted."""
        template = make_template(body="{{severity}}/{{severity}}")
        assert TemplateRenderer().render(template, make_alert()).body == "high/high"
