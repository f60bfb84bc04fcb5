import logging

from companion_memory.config import Config
from companion_memory.memory import MemoryService
from companion_memory.server import create_app


def main():
    """Build the memory service and its HTTP app from configuration."""
    config = Config()

    memory_service = MemoryService.from_config(config.as_dict())

    server_config = config.get_server_config()
    app = create_app(
        memory_service,
        server_config,
        drain_timeout=config.get('memory', 'background_drain_timeout_seconds', default=10.0)
    )

    logging.info("Companion memory service initialized successfully")
    return app


_global_app = None


def get_app():
    """Get or create the FastAPI app instance."""
    global _global_app
    if _global_app is None:
        _global_app = main()
    return _global_app


def run():
    import uvicorn

    config = Config(setup_logging=False)
    server_config = config.get_server_config()

    uvicorn.run(
        "companion_memory.main:get_app",
        factory=True,
        host=server_config.get('host', '127.0.0.1'),
        port=server_config.get('port', 8080)
    )


if __name__ == "__main__":
    run()
