"""
Post-sync plugins.

A plugin declaration lives in <output>/plugins/ as plugins.json, plugins.yaml
or plugins.yml (the first one found wins):

```yaml
plugins:
  - no_public_buckets.py                 # python script in <output>/plugins/
  - run: audit.sh                        # shell script in <output>/plugins/
    description: Audit security groups
  - run: echo "inline shell"
    disabled: true
```

Steps run one at a time, in order. A failing step aborts the rest.
"""
import json
import logging
import os
import shutil
import subprocess
import sys
from typing import Annotated, Any, Dict, List, Optional

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, StringConstraints

from .constants import (
    DEFAULT_OUTPUT_DIR,
    ENV_DISABLE_PLUGINS,
    ENV_OUTPUT,
    GITIGNORE_FILE,
    PLUGIN_DECLARATION_FILES,
    PLUGINS_DIR,
    PLUGINS_RUN_DIR,
    TRUTHY_ENV_VALUES,
)
from .errors import CliPluginError

logger = logging.getLogger(__name__)


class PluginStep(BaseModel):
    """One declared plugin step."""
    run: Annotated[str, StringConstraints(min_length=1)]
    description: Optional[str] = None
    disabled: Optional[bool] = None


def plugins_disabled() -> bool:
    return os.environ.get(ENV_DISABLE_PLUGINS, '') in TRUTHY_ENV_VALUES


def find_declaration(output_dir: str = DEFAULT_OUTPUT_DIR) -> Optional[str]:
    """Return the path of the first plugin declaration found, if any."""
    for name in PLUGIN_DECLARATION_FILES:
        path = os.path.join(output_dir, PLUGINS_DIR, name)
        if os.path.exists(path):
            return path
    return None


def load_declaration(path: str) -> Dict[str, Any]:
    with open(path) as f:
        if path.endswith('.json'):
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise CliPluginError('Invalid plugin file format')
    return data


def parse_step(step: Any) -> PluginStep:
    """Normalize a declared step (inline string or object) into a PluginStep."""
    if isinstance(step, str):
        return PluginStep(run=step)
    if isinstance(step, dict):
        return PluginStep.model_validate(step)
    raise CliPluginError('Invalid plugin file format')


def start_plugins(output_dir: str = DEFAULT_OUTPUT_DIR) -> int:
    """
    Run the declared plugins, if any.

    Returns:
        Number of steps executed
    """
    if plugins_disabled():
        logger.info(f"Plugins disabled by {ENV_DISABLE_PLUGINS}")
        return 0
    path = find_declaration(output_dir)
    if path is None:
        return 0
    return run_plugins(path, output_dir)


def run_plugins(declaration_path: str, output_dir: str = DEFAULT_OUTPUT_DIR) -> int:
    declaration = load_declaration(declaration_path)
    if declaration.get('disabled'):
        logger.info(f"All plugins disabled in {declaration_path}")
        return 0
    steps = declaration.get('plugins')
    if not isinstance(steps, list):
        return 0

    run_dir = os.path.join(output_dir, PLUGINS_DIR, PLUGINS_RUN_DIR)
    if os.path.exists(run_dir):
        shutil.rmtree(run_dir)
    os.makedirs(run_dir)
    with open(os.path.join(run_dir, GITIGNORE_FILE), 'w') as f:
        f.write('*\n')

    executed = 0
    for index, raw in enumerate(steps):
        step = parse_step(raw)
        if step.disabled:
            continue
        run_plugin(step, index, output_dir)
        executed += 1
    return executed


def plugin_command(step: PluginStep, index: int, output_dir: str) -> List[str]:
    """Build the command line of a step; inline steps are written to a script first."""
    plugins_dir = os.path.join(output_dir, PLUGINS_DIR)
    if step.run.endswith('.py'):
        return [sys.executable, os.path.join(plugins_dir, step.run)]
    if step.run.endswith('.sh'):
        return ['sh', os.path.join(plugins_dir, step.run)]

    script_path = os.path.join(plugins_dir, PLUGINS_RUN_DIR, f"plugin-{index}.sh")
    with open(script_path, 'w') as f:
        f.write(step.run)
    return ['sh', script_path]


def run_plugin(step: PluginStep, index: int, output_dir: str = DEFAULT_OUTPUT_DIR) -> None:
    label = f"{index}: {step.description}" if step.description else str(index)
    print(f"Running plugin ... [{label}]")

    command = plugin_command(step, index, output_dir)
    logger.debug(f"Plugin command: {command}")
    # Plugins locate the mirrored tree through CFS_OUTPUT
    result = subprocess.run(command, env={**os.environ, ENV_OUTPUT: output_dir})
    if result.returncode != 0:
        logger.error(f"Plugin [{label}] exited with code {result.returncode}")
        raise CliPluginError('The plugin failed.')
