"""Template rendering and Docker configuration rendering."""

from node_reconciler.render.docker import (
    RenderedConfig,
    effective_registries,
    render_custom_conf,
    render_docker_config,
    render_options_line,
    render_registries_conf,
)
from node_reconciler.render.renderer import (
    load_asset,
    render_asset,
    render_template,
)

__all__ = [
    "RenderedConfig",
    "effective_registries",
    "load_asset",
    "render_asset",
    "render_custom_conf",
    "render_docker_config",
    "render_options_line",
    "render_registries_conf",
    "render_template",
]
