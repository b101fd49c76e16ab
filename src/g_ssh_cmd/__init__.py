"""g-ssh-cmd - 在一组远程目标上并发执行命令。

支持 AWS ASG、GCP MIG 和 Kubernetes Pods，实时输出每个目标的
stdout/stderr，Ctrl+C 时终止所有目标。

用法:
    g-ssh-cmd <asg|mig|pod> <group-name> <cmd>
"""

__version__ = "0.1.0"

from .app import main

__all__ = ["__version__", "main"]
