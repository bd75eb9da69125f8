"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import HTMLResponse

from ..services.console import Console
from .routes import router

logger = logging.getLogger(__name__)


def create_app(console: Console | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.console = console or Console()
        app.state.console.start()
        logger.info("Console started")
        try:
            yield
        finally:
            await app.state.console.aclose()

    app = FastAPI(
        title="Bacon Console",
        description="Operator console for a Tezos baking node",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(router, prefix="/api")

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return """
<!DOCTYPE html>
<html>
<head>
    <title>Bacon Console</title>
    <script src="https://cdn.tailwindcss.com"></script>
</head>
<body class="bg-gray-900 text-white min-h-screen p-8">
    <div class="max-w-4xl mx-auto">
        <h1 class="text-3xl font-bold mb-2">Bacon Console</h1>
        <p class="text-gray-400 mb-8">Status of your baking node</p>

        <div id="toasts" class="fixed top-4 right-4 space-y-2 w-80"></div>

        <div class="bg-gray-800 rounded-lg p-6 mb-6">
            <div class="grid grid-cols-2 gap-4">
                <div>
                    <div class="text-gray-400 text-sm">View</div>
                    <div class="text-xl font-bold" id="view">loading</div>
                </div>
                <div>
                    <div class="text-gray-400 text-sm">Connected</div>
                    <div class="text-xl font-bold" id="connected">-</div>
                </div>
                <div>
                    <div class="text-gray-400 text-sm">Level / Cycle</div>
                    <div class="text-xl font-bold" id="level">-</div>
                </div>
                <div>
                    <div class="text-gray-400 text-sm">Spendable</div>
                    <div class="text-xl font-bold text-green-400" id="spendable">-</div>
                </div>
            </div>
        </div>
    </div>

    <script>
        async function dismiss(id) {
            await fetch(`/api/notifications/${id}`, {method: 'DELETE'});
            refresh();
        }

        async function refresh() {
            const state = await (await fetch('/api/console')).json();
            document.getElementById('view').textContent = state.view;
            document.getElementById('connected').textContent = state.connected ? 'yes' : 'no';
            if (state.status) {
                document.getElementById('level').textContent = `${state.status.level} / ${state.status.cycle}`;
            }
            if (state.balance) {
                document.getElementById('spendable').textContent =
                    (state.balance.spendable / 1e6).toFixed(6) + ' XTZ';
            }

            const toasts = await (await fetch('/api/notifications')).json();
            document.getElementById('toasts').replaceChildren(...toasts.map(toast));
        }

        function toast(t) {
            // Titles and messages may carry RPC error strings; never parse them as HTML
            const box = document.createElement('div');
            box.className = 'bg-gray-800 border-l-4 p-3 rounded ' +
                (t.severity === 'danger' ? 'border-red-500' : 'border-blue-500');

            const header = document.createElement('div');
            header.className = 'flex justify-between';
            const title = document.createElement('strong');
            title.textContent = t.title;
            const close = document.createElement('button');
            close.className = 'text-gray-400';
            close.textContent = '×';
            close.addEventListener('click', () => dismiss(t.id));
            header.append(title, close);

            const message = document.createElement('div');
            message.className = 'text-sm text-gray-300';
            message.textContent = t.message;

            box.append(header, message);
            return box;
        }

        refresh();
        setInterval(refresh, 10000);
    </script>
</body>
</html>
"""

    return app
