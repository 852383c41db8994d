import json
from typing import Dict, Any, List
from pathlib import Path

class Config:
    """Configuration manager for the tool catalogue and dashboard defaults"""

    def __init__(self, config_file: str = "config.json"):
        self.config_file = config_file
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from JSON file"""
        config_path = Path(__file__).parent / self.config_file

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r') as f:
                config = json.load(f)

            return config
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}")

    def get_tools(self) -> Dict[str, Dict[str, Any]]:
        """Get the tool catalogue keyed by tool identifier"""
        return self._config.get("tools", {})

    def get_known_tools(self) -> List[str]:
        """Get known tool identifiers in catalogue order"""
        return list(self.get_tools().keys())

    def get_tool_display_name(self, tool_id: str) -> str:
        """Human readable tool name, falling back to the identifier"""
        tool = self.get_tools().get(tool_id) or {}
        return tool.get("name", tool_id)

    def is_known_tool(self, tool_id: str) -> bool:
        return tool_id in self.get_tools()

# Global configuration instance
config = Config()
