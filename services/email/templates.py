# services/email/templates.py
from jinja2 import Environment, DictLoader, select_autoescape

_TEMPLATES = {
    "purchased.html": """\
<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto">
  <h2>Compra confirmada!</h2>
  <p>Olá{% if d.purchaser_name %} {{ d.purchaser_name }}{% endif %}, seu vale-presente de
     <strong>{{ d.business_name }}</strong> está ativo.</p>
  <div style="background:{{ d.card_color }};color:#fff;border-radius:12px;padding:24px">
    <div style="font-size:14px;opacity:.8">{{ d.template_name }}</div>
    <div style="font-size:32px;font-weight:bold">{{ d.amount_formatted }}</div>
    <div style="font-family:monospace;font-size:20px;letter-spacing:2px">{{ d.code }}</div>
  </div>
  {% if d.is_gift %}<p>Enviamos o presente para {{ d.recipient_name or d.recipient_email }}.</p>{% endif %}
  <p>Válido até {{ d.expires_at }} ({{ d.valid_days }} dias).</p>
</div>
""",
    "purchased.txt": """\
Compra confirmada!

Seu vale-presente de {{ d.business_name }} está ativo.
{{ d.template_name }}: {{ d.amount_formatted }}
Código: {{ d.code }}
{% if d.is_gift %}Enviado para: {{ d.recipient_name or d.recipient_email }}
{% endif %}Válido até {{ d.expires_at }} ({{ d.valid_days }} dias).
""",
    "received.html": """\
<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto">
  <h2>Você ganhou um presente!</h2>
  <p>{{ d.purchaser_name or d.purchaser_email }} enviou um vale-presente de
     <strong>{{ d.business_name }}</strong> para você{% if d.recipient_name %}, {{ d.recipient_name }}{% endif %}.</p>
  {% if d.message %}<blockquote style="border-left:4px solid {{ d.card_color }};padding-left:12px">{{ d.message }}</blockquote>{% endif %}
  <div style="background:{{ d.card_color }};color:#fff;border-radius:12px;padding:24px">
    <div style="font-size:14px;opacity:.8">{{ d.template_name }}</div>
    <div style="font-size:32px;font-weight:bold">{{ d.amount_formatted }}</div>
    <div style="font-family:monospace;font-size:20px;letter-spacing:2px">{{ d.code }}</div>
  </div>
  <p>Válido até {{ d.expires_at }} ({{ d.valid_days }} dias).</p>
</div>
""",
    "received.txt": """\
Você ganhou um presente!

{{ d.purchaser_name or d.purchaser_email }} enviou um vale-presente de {{ d.business_name }}.
{% if d.message %}"{{ d.message }}"
{% endif %}{{ d.template_name }}: {{ d.amount_formatted }}
Código: {{ d.code }}
Válido até {{ d.expires_at }} ({{ d.valid_days }} dias).
""",
}

_env = Environment(
    loader=DictLoader(_TEMPLATES),
    autoescape=select_autoescape(enabled_extensions=("html",), default_for_string=False),
)


def render(name: str, data) -> str:
    return _env.get_template(name).render(d=data)
