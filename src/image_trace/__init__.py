"""
image-trace - Multi-Provider Reverse Image Search

Fans a query image out to several search providers concurrently, merges and
ranks their matches, shapes the view per subscription plan, and stores an
encrypted audit record of every search.

Usage:
    from image_trace.container import ApplicationContainer
    from image_trace.config import Settings

    container = ApplicationContainer()
    container.config.from_dict(Settings.from_env().to_container_config())
    service = container.search_service()

    response = await service.search(request)
"""

__version__ = "0.1.0"
