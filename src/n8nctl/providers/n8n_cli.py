"""Provider for n8n's bundled ``import:*`` / ``export:*`` commands."""
from __future__ import annotations

import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

Runner = Callable[[Sequence[str]], subprocess.CompletedProcess[str]]


class N8nCliError(RuntimeError):
    """Raised when the n8n executable is missing or exits non-zero."""


@dataclass(slots=True)
class N8nCli:
    """Invoke the n8n executable with the operator's terminal attached.

    ``kind`` is the executable's noun: ``workflow`` or ``credentials``.
    """

    n8n_bin: str = "n8n"
    runner: Runner | None = None

    def import_dir(self, kind: str, input_dir: Path) -> subprocess.CompletedProcess[str]:
        """Import every JSON file found in *input_dir*."""
        return self._run(
            [self.n8n_bin, f"import:{kind}", "--separate", "--input", str(input_dir)],
        )

    def export_one(
        self,
        kind: str,
        artifact_id: str,
        output_dir: Path,
        *,
        decrypted: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Export *artifact_id* into ``output_dir/<artifact_id>.json``."""
        args = [self.n8n_bin, f"export:{kind}"]
        if decrypted:
            args.append("--decrypted")
        args.extend(["--separate", "--output", str(output_dir), "--id", artifact_id])
        return self._run(args)

    def _run(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        runner = self.runner or _default_runner
        try:
            result = runner(list(args))
        except FileNotFoundError as exc:
            raise N8nCliError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            raise N8nCliError(f"{' '.join(args[:2])} failed (exit {result.returncode}).")
        return result


def _default_runner(args: Sequence[str]) -> subprocess.CompletedProcess[str]:
    # Standard streams are inherited so n8n's own progress output stays visible.
    return subprocess.run(list(args), text=True, check=False)  # noqa: S603, S607


__all__ = ["N8nCli", "N8nCliError"]
