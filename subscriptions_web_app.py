"""
Subscription tracker web app.
- JSON CRUD endpoints under /subscriptions backed by a single SQL table.
- One page at / with a create/edit form, the subscription list and the total monthly cost.
- The page re-fetches the full list after every create, update or delete.
- Tests live in test_subscriptions_web_app.py; run with: `python -m unittest -v`.
"""

from __future__ import annotations

import argparse
import os
import socket
import sys

from flask import Flask, jsonify, render_template_string, request
from sqlalchemy import create_engine

from subscription_store import (
    HIGH_COST_THRESHOLD,
    InvalidIdError,
    NotFoundError,
    SubscriptionPatch,
    ValidationError,
    cost_class,
    create_subscription,
    delete_subscription,
    ensure_schema,
    list_subscriptions,
    monthly_cost,
    parse_subscription_id,
    seed_subscriptions,
    update_subscription,
)

DEFAULT_DB_URL = "sqlite:///subscriptions.db"
INTERNAL_ERROR = "Internal server error"


def make_engine(db_url: str | None = None):
    """Build an engine from an explicit URL, DATABASE_URL, or the bundled sqlite file."""
    url = db_url or os.environ.get("DATABASE_URL") or DEFAULT_DB_URL
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(url)


def _error(message: str, status: int):
    return jsonify({"error": message}), status


# -----------------------------
# App factory (allows testing)
# -----------------------------

def create_app(db_url: str | None = None, *, engine_override=None) -> Flask:
    app = Flask(__name__)
    app.secret_key = os.environ.get("FLASK_SECRET_KEY", "dev-key-change-me")

    engine = engine_override if engine_override is not None else make_engine(db_url)
    ensure_schema(engine)

    PAGE_TEMPLATE = """
<!doctype html>
<html lang=\"en\">
<head>
  <meta charset=\"utf-8\">
  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1\">
  <title>Subscriptions</title>
  <link href=\"https://cdn.jsdelivr.net/npm/bootstrap@5.3.3/dist/css/bootstrap.min.css\" rel=\"stylesheet\">
  <style>
    body { background: #f8f9fa; }
    .card { border-radius: 1rem; }
  </style>
</head>
<body>
<main class=\"container py-5\" style=\"max-width: 860px;\">
  <section class=\"card shadow-sm p-4 mb-4\">
    <h1 class=\"h3 mb-1\">Subscriptions</h1>
    <p class=\"text-muted small mb-4\">Add the services you pay for and keep an eye on what they cost each month.</p>

    <div id=\"error\" class=\"alert alert-danger py-2 d-none\" role=\"alert\"></div>

    <form id=\"sub-form\" class=\"row g-3\">
      <div class=\"col-md-6\">
        <label class=\"form-label small fw-semibold\" for=\"name\">Service name</label>
        <input class=\"form-control\" id=\"name\" placeholder=\"e.g. Netflix, Spotify\" required>
      </div>
      <div class=\"col-md-6\">
        <label class=\"form-label small fw-semibold\" for=\"price\">Price</label>
        <input class=\"form-control\" id=\"price\" type=\"number\" step=\"0.01\" min=\"0\" placeholder=\"e.g. 15.99\" required>
      </div>
      <div class=\"col-md-6\">
        <label class=\"form-label small fw-semibold\" for=\"cycle\">Billing cycle</label>
        <select class=\"form-select\" id=\"cycle\">
          <option value=\"monthly\">Monthly</option>
          <option value=\"yearly\">Yearly</option>
        </select>
      </div>
      <div class=\"col-md-6\">
        <label class=\"form-label small fw-semibold\" for=\"startDate\">Start date</label>
        <input class=\"form-control\" id=\"startDate\" type=\"date\" required>
      </div>
      <div class=\"col-12 d-flex gap-2\">
        <button class=\"btn btn-dark\" id=\"submit-btn\" type=\"submit\">Add subscription</button>
        <button class=\"btn btn-outline-secondary d-none\" id=\"cancel-btn\" type=\"button\">Cancel</button>
      </div>
    </form>
  </section>

  <section class=\"card shadow-sm p-4\">
    <div class=\"d-flex justify-content-between align-items-baseline mb-3\">
      <h2 class=\"h5 mb-0\">Your subscriptions</h2>
      <div class=\"small\">Monthly total:
        <span id=\"monthly-total\" class=\"fw-bold {{ 'text-danger' if total_class == 'high' else 'text-success' }}\">{{ '%.2f'|format(monthly_total) }}</span>
      </div>
    </div>
    <table class=\"table table-sm align-middle mb-0\">
      <thead>
        <tr><th>Name</th><th class=\"text-end\">Price</th><th>Cycle</th><th>Start</th><th></th></tr>
      </thead>
      <tbody id=\"sub-rows\">
      {% for s in subs %}
        <tr>
          <td>{{ s.name }}</td>
          <td class=\"text-end\">{{ '%.2f'|format(s.price) }}</td>
          <td>{{ s.cycle }}</td>
          <td>{{ s.startDate[:10] }}</td>
          <td class=\"text-end\">
            <button class=\"btn btn-sm btn-outline-primary\" data-edit=\"{{ s.id }}\">Edit</button>
            <button class=\"btn btn-sm btn-outline-danger\" data-delete=\"{{ s.id }}\">Delete</button>
          </td>
        </tr>
      {% else %}
        <tr><td colspan=\"5\" class=\"text-muted small\">No subscriptions yet.</td></tr>
      {% endfor %}
      </tbody>
    </table>
  </section>
</main>

<script>
  const HIGH_COST_THRESHOLD = {{ high_cost_threshold }};
  let subscriptions = {{ subs|tojson }};
  let editingId = null;

  const form = document.getElementById('sub-form');
  const fields = ['name', 'price', 'cycle', 'startDate'].reduce((acc, id) => {
    acc[id] = document.getElementById(id); return acc;
  }, {});
  const submitBtn = document.getElementById('submit-btn');
  const cancelBtn = document.getElementById('cancel-btn');
  const errorBox = document.getElementById('error');

  function showError(message) {
    errorBox.textContent = message;
    errorBox.classList.toggle('d-none', !message);
  }

  function monthlyCost(list) {
    return list.reduce((sum, s) => {
      const price = Number(s.price) || 0;
      return sum + ((s.cycle || '').toLowerCase() === 'yearly' ? price / 12 : price);
    }, 0);
  }

  function render() {
    const tbody = document.getElementById('sub-rows');
    tbody.innerHTML = '';
    if (!subscriptions.length) {
      const tr = tbody.insertRow();
      const td = tr.insertCell();
      td.colSpan = 5; td.className = 'text-muted small'; td.textContent = 'No subscriptions yet.';
    }
    for (const s of subscriptions) {
      const tr = tbody.insertRow();
      tr.insertCell().textContent = s.name;
      const price = tr.insertCell(); price.className = 'text-end'; price.textContent = Number(s.price).toFixed(2);
      tr.insertCell().textContent = s.cycle;
      tr.insertCell().textContent = (s.startDate || '').slice(0, 10);
      const actions = tr.insertCell(); actions.className = 'text-end';
      actions.innerHTML = '<button class=\"btn btn-sm btn-outline-primary\">Edit</button> '
        + '<button class=\"btn btn-sm btn-outline-danger\">Delete</button>';
      actions.children[0].dataset.edit = s.id;
      actions.children[1].dataset.delete = s.id;
    }
    const total = monthlyCost(subscriptions);
    const totalEl = document.getElementById('monthly-total');
    totalEl.textContent = total.toFixed(2);
    totalEl.className = 'fw-bold ' + (total > HIGH_COST_THRESHOLD ? 'text-danger' : 'text-success');
  }

  async function errorFrom(res, fallback) {
    const body = await res.json().catch(() => ({}));
    return new Error(body.error || fallback);
  }

  async function fetchSubscriptions() {
    const res = await fetch('/subscriptions');
    if (!res.ok) throw await errorFrom(res, 'Could not load subscriptions.');
    subscriptions = await res.json();
    render();
  }

  function ensureCycleOption(value) {
    if (!value || [...fields.cycle.options].some((o) => o.value === value)) return;
    const opt = new Option(value, value);
    opt.dataset.extra = '1';
    fields.cycle.add(opt);
  }

  function resetForm() {
    editingId = null;
    form.reset();
    fields.cycle.querySelectorAll('option[data-extra]').forEach((o) => o.remove());
    fields.cycle.value = 'monthly';
    submitBtn.textContent = 'Add subscription';
    cancelBtn.classList.add('d-none');
  }

  function startEdit(id) {
    const s = subscriptions.find((x) => x.id === id);
    if (!s) return;
    editingId = id;
    fields.name.value = s.name;
    fields.price.value = s.price;
    ensureCycleOption(s.cycle);
    fields.cycle.value = s.cycle;
    fields.startDate.value = (s.startDate || '').slice(0, 10);
    submitBtn.textContent = 'Save changes';
    cancelBtn.classList.remove('d-none');
  }

  form.addEventListener('submit', async (e) => {
    e.preventDefault();
    showError('');
    submitBtn.disabled = true;
    const payload = {
      name: fields.name.value,
      price: Number(fields.price.value),
      cycle: fields.cycle.value,
      startDate: fields.startDate.value,
    };
    if (!payload.cycle) delete payload.cycle;
    const url = editingId === null ? '/subscriptions' : '/subscriptions/' + editingId;
    try {
      const res = await fetch(url, {
        method: editingId === null ? 'POST' : 'PATCH',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify(payload),
      });
      if (!res.ok) throw await errorFrom(res, 'Could not save the subscription.');
      resetForm();
      await fetchSubscriptions();
    } catch (err) {
      showError(err instanceof Error ? err.message : 'Unknown error');
    } finally {
      submitBtn.disabled = false;
    }
  });

  cancelBtn.addEventListener('click', resetForm);

  document.getElementById('sub-rows').addEventListener('click', async (e) => {
    const btn = e.target.closest('button');
    if (!btn) return;
    if (btn.dataset.edit) { startEdit(Number(btn.dataset.edit)); return; }
    if (!btn.dataset.delete || !confirm('Delete this subscription?')) return;
    showError('');
    try {
      const res = await fetch('/subscriptions/' + btn.dataset.delete, { method: 'DELETE' });
      if (!res.ok) throw await errorFrom(res, 'Could not delete the subscription.');
      if (editingId === Number(btn.dataset.delete)) resetForm();
      await fetchSubscriptions();
    } catch (err) {
      showError(err instanceof Error ? err.message : 'Unknown error');
    }
  });
</script>
</body>
</html>
"""

    @app.get("/")
    def index():
        subs = list_subscriptions(engine)
        total = monthly_cost(subs)
        return render_template_string(
            PAGE_TEMPLATE,
            subs=subs,
            monthly_total=total,
            total_class=cost_class(total),
            high_cost_threshold=HIGH_COST_THRESHOLD,
        )

    # ---- Subscriptions API ----
    @app.get("/subscriptions")
    def subscriptions_list():
        try:
            subs = list_subscriptions(engine)
        except Exception:
            app.logger.exception("GET /subscriptions failed")
            return _error(INTERNAL_ERROR, 500)
        return jsonify(subs)

    @app.post("/subscriptions")
    def subscriptions_create():
        try:
            body = request.get_json(force=True)
            if not isinstance(body, dict):
                body = {}
            created = create_subscription(
                engine,
                body.get("name"),
                body.get("price"),
                body.get("cycle"),
                body.get("startDate"),
            )
        except ValidationError as exc:
            return _error(exc.message, 400)
        except Exception:
            app.logger.exception("POST /subscriptions failed")
            return _error(INTERNAL_ERROR, 500)
        app.logger.info("Created subscription %s (%s)", created["id"], created["name"])
        return jsonify(created), 201

    @app.patch("/subscriptions/<sub_id>")
    def subscriptions_update(sub_id: str):
        try:
            numeric_id = parse_subscription_id(sub_id)
            patch = SubscriptionPatch.from_json(request.get_json(force=True))
            updated = update_subscription(engine, numeric_id, patch)
        except (InvalidIdError, ValidationError) as exc:
            return _error(exc.message, 400)
        except NotFoundError as exc:
            return _error(exc.message, 404)
        except Exception:
            app.logger.exception("PATCH /subscriptions/%s failed", sub_id)
            return _error(INTERNAL_ERROR, 500)
        app.logger.info("Updated subscription %s", numeric_id)
        return jsonify(updated), 200

    @app.delete("/subscriptions/<sub_id>")
    def subscriptions_delete(sub_id: str):
        try:
            numeric_id = parse_subscription_id(sub_id)
            deleted = delete_subscription(engine, numeric_id)
        except InvalidIdError as exc:
            return _error(exc.message, 400)
        except NotFoundError as exc:
            return _error(exc.message, 404)
        except Exception:
            app.logger.exception("DELETE /subscriptions/%s failed", sub_id)
            return _error(INTERNAL_ERROR, 500)
        app.logger.info("Deleted subscription %s", numeric_id)
        return jsonify(deleted), 200

    # Expose engine for tests and the CLI
    app.config["_ENGINE"] = engine

    return app


# -----------------------------
# Dev server with safe port binding (debugger & reloader disabled)
# -----------------------------

def _find_free_port() -> int:
    env_port = os.environ.get("PORT")
    if env_port:
        try:
            port = int(env_port)
            if 0 <= port <= 65535:
                return port
        except ValueError:
            pass
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Subscription tracker web application.")
    parser.add_argument(
        "--database",
        help="SQLAlchemy database URL to use (defaults to DATABASE_URL or the bundled sqlite file).",
    )
    parser.add_argument(
        "--host",
        help="Host interface for the development server. Defaults to HOST env var or 127.0.0.1.",
    )
    parser.add_argument(
        "--port",
        type=int,
        help="Port for the development server. Defaults to PORT env var or an ephemeral port.",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Insert a few demo subscriptions and exit.",
    )

    args = parser.parse_args(argv)
    app = create_app(db_url=args.database)

    if args.seed:
        rows = seed_subscriptions(app.config["_ENGINE"])
        print(f"Seeded {len(rows)} subscriptions.")
        return

    host = args.host or os.environ.get("HOST", "127.0.0.1")
    port = args.port if args.port is not None else _find_free_port()

    try:
        print(f"Starting server on http://{host}:{port}")
        app.run(host=host, port=port, debug=False, use_reloader=False, threaded=False)
    except SystemExit:
        print(
            "\n[!] Server failed to start (SystemExit). This environment may block sockets or the port is unavailable."
        )
        print("    - Try setting a custom port: PORT=5000 python subscriptions_web_app.py")
        sys.exit(0)


if __name__ == "__main__":
    main()
