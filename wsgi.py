# wsgi.py
import os

from coachhq import create_app

# ─────────────────────────────────────────────────────────────
# Gunicorn entrypoint
# ─────────────────────────────────────────────────────────────
app = create_app()

if __name__ == "__main__":
    port = int(os.getenv("PORT", 5000))
    app.run(host="0.0.0.0", port=port, debug=False)
