# relaychat: multi-user chat backend with a streaming, tool-using agent participant.
# Subpackages are reached as rc.common, rc.llm, rc.live, rc.agent after `import relaychat as rc`.

from . import common
from . import llm
from . import live
from . import agent

__all__ = ["common", "llm", "live", "agent"]
