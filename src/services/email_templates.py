"""
Jinja2 templates for transactional emails.

Templates are kept deliberately plain; styling belongs to the mail client.
Each email has an HTML and a text part rendered from the same context.
"""
from typing import Any

from jinja2 import DictLoader, Environment, StrictUndefined, select_autoescape

_BASE_HTML = """\
<!DOCTYPE html>
<html lang="it">
<head><meta charset="UTF-8"><title>{{ subject }}</title></head>
<body>
  <h1>{{ brand }}</h1>
  <p>Ciao {{ name }},</p>
  {% block content %}{% endblock %}
  <p>Il team {{ brand }}</p>
</body>
</html>
"""

_TEMPLATES: dict[str, str] = {
    "base.html": _BASE_HTML,
    "verification.html": """\
{% extends "base.html" %}
{% block content %}
  <p>Grazie per aver richiesto la tua Fidelity Card. Per completare la registrazione
  clicca sul pulsante qui sotto.</p>
  <p><a href="{{ link }}">Completa la registrazione</a></p>
  <p>Il link scade tra {{ expires_minutes }} minuti. Se il pulsante non funziona copia
  questo indirizzo nel browser:</p>
  <p>{{ link }}</p>
{% endblock %}
""",
    "verification.txt": """\
Ciao {{ name }},

per completare la registrazione della tua Fidelity Card apri questo link:
{{ link }}

Il link scade tra {{ expires_minutes }} minuti.

Il team {{ brand }}
""",
    "profile_access.html": """\
{% extends "base.html" %}
{% block content %}
  <p>Abbiamo ricevuto una richiesta di accesso alla tua area personale.</p>
  <p><a href="{{ link }}">Accedi al tuo profilo</a></p>
  <p>Il link scade tra {{ expires_minutes }} minuti. Se non hai richiesto tu
  l'accesso puoi ignorare questa email.</p>
  <p>{{ link }}</p>
{% endblock %}
""",
    "profile_access.txt": """\
Ciao {{ name }},

per accedere alla tua area personale apri questo link:
{{ link }}

Il link scade tra {{ expires_minutes }} minuti.

Il team {{ brand }}
""",
    "welcome.html": """\
{% extends "base.html" %}
{% block content %}
  <p>Benvenuto! La tua Fidelity Card è attiva.</p>
  <p>Il tuo codice: <strong>{{ identity_code }}</strong></p>
  {% if has_card %}<p>In allegato trovi la tua card digitale.</p>{% endif %}
  <p>Hai ottenuto uno sconto del 10% sul tuo primo acquisto nel nostro e-commerce.</p>
{% endblock %}
""",
    "welcome.txt": """\
Ciao {{ name }},

benvenuto! La tua Fidelity Card è attiva.
Il tuo codice: {{ identity_code }}
{% if has_card %}In allegato trovi la tua card digitale.
{% endif %}
Il team {{ brand }}
""",
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
    undefined=StrictUndefined,
    keep_trailing_newline=True,
)


def render_email(template: str, **context: Any) -> tuple[str, str]:
    """
    Render the HTML and text parts of an email.

    Args:
        template: Template base name, e.g. 'verification'.
        **context: Template variables.

    Returns:
        Tuple of (html, text).
    """
    html = _env.get_template(f"{template}.html").render(**context)
    text = _env.get_template(f"{template}.txt").render(**context)
    return html, text
