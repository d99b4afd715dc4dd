"""Packaged templates rendered by :mod:`node_reconciler.render.renderer`."""
