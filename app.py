from __future__ import annotations

import logging
from typing import Optional

from kubernetes import client, config as kube_config

from gpudra.api import create_app
from gpudra.config import Config, load_config
from gpudra.driver import Driver
from gpudra.params import ParametersResolver

logger = logging.getLogger(__name__)


def load_kubernetes(cfg: Config) -> client.CustomObjectsApi:
    """In-cluster config first, then the configured (or default) kubeconfig."""
    try:
        kube_config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kube_config.ConfigException:
        kube_config.load_kube_config(config_file=cfg.kubeconfig)
        logger.info(f"Loaded kubeconfig {cfg.kubeconfig or '(default)'}")
    return client.CustomObjectsApi()


def build_app(cfg: Optional[Config] = None, api: Optional[client.CustomObjectsApi] = None):
    """Build the Flask app around a single Driver shared by all requests."""
    cfg = cfg or load_config()
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    api = api or load_kubernetes(cfg)
    driver = Driver(api, namespace=cfg.namespace, timeout=cfg.request_timeout_s)
    resolver = ParametersResolver(api, driver, timeout=cfg.request_timeout_s)
    logger.info(f"GPU allocation controller serving namespace '{cfg.namespace}'")

    app = create_app(driver, resolver)
    app.config['gpudra_config'] = cfg
    return app


if __name__ == "__main__":
    cfg = load_config()
    build_app(cfg).run(host=cfg.bind_host, port=cfg.bind_port, threaded=True)
