"""Resources shipped inside the package.

These are the lowest-precedence tier: any user or project file with the same
name replaces them.
"""

from __future__ import annotations

BUILTIN_PROMPTS: dict[str, str] = {
    "help": """---
title: Help
description: Explain how to use toolsmith prompts and workflows
---

You are helping a developer use toolsmith.
Prompts live in ~/.toolsmith/prompts and ./.toolsmith/prompts.
Workflows live in ~/.toolsmith/workflows and ./.toolsmith/workflows.
""",
    "debug/error": """---
title: Debug an error
description: Analyse an error message and suggest a fix
arguments:
  - name: error
    description: The error message or stack trace
    required: true
  - name: context
    description: What you were doing when it happened
---

Analyse the following error and propose the smallest fix.

Error:
{{ error }}

Context:
{{ context }}
""",
    "review/code": """---
title: Code review
description: Review a change for correctness and style
arguments:
  - name: diff
    required: true
---

Review this change. List defects first, then style issues.

{{ diff }}
""",
}

BUILTIN_WORKFLOWS: dict[str, str] = {
    "hello-world": """---
name: hello-world
description: Minimal workflow that greets and finishes
version: 1
---

```mermaid
stateDiagram-v2
    [*] --> Start
    Start --> Greet
    Greet --> Done
    Done --> [*]
```

## Actions

- Start: Log "Starting hello-world"
- Greet: Set greeting="Hello from toolsmith"
- Done: Log "hello-world finished"
""",
    "review-loop": """---
name: review-loop
description: Implement, review and loop until the review passes
version: 1
---

```mermaid
stateDiagram-v2
    [*] --> Implement
    Implement --> Review
    Review --> Decide
    state Decide <<choice>>
    Decide --> Ship : approved {approved == "yes"}
    Decide --> Implement : changes requested
    Ship --> [*]
```

## Actions

- Implement: Log "Implementing change"
- Review: Execute prompt "review/code" -> review
- Ship: Log "Change approved"
""",
    "parallel-checks": """---
name: parallel-checks
description: Run lint and tests side by side, then report
version: 1
---

```mermaid
stateDiagram-v2
    state Split <<fork>>
    state Merge <<join>>
    [*] --> Prepare
    Prepare --> Split
    Split --> Lint
    Split --> Test
    Lint --> Merge
    Test --> Merge
    Merge --> Report
    Report --> [*]
```

## Actions

- Lint: Set lint="ok"
- Test: Set tests="ok"
- Report: Log "All checks finished"
""",
}
