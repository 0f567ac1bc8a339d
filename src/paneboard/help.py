"""
Context-sensitive help documents.

Each document has a title, a description and titled sections of items.
help_for() selects a document by context tag and falls back to the general
document for contexts it does not know.
"""

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class HelpSection:
    title: str
    items: tuple[str, ...]


@dataclass(frozen=True)
class HelpDocument:
    """
    Structured help shown by the help overlay.

    Attributes:
        context: Context tag the document was selected for
        title: Heading
        description: One-line summary
        sections: Grouped help items
    """

    context: str
    title: str
    description: str
    sections: tuple[HelpSection, ...]

    def with_section(self, section: HelpSection) -> "HelpDocument":
        return replace(self, sections=self.sections + (section,))


GENERAL_HELP = HelpDocument(
    context="general",
    title="Dashboard Help",
    description="Interactive workflow orchestration for AI agents",
    sections=(
        HelpSection(
            "Getting Started",
            (
                "Tab/Shift+Tab: Move between panes",
                "h: Toggle this help",
                "q: Quit the dashboard",
            ),
        ),
        HelpSection(
            "Live Updates",
            (
                "Panes refresh when project files change",
                "Time-critical changes are applied first",
                "r: Refresh all panes on demand",
            ),
        ),
    ),
)

HELP_DOCUMENTS: dict[str, HelpDocument] = {
    "dashboard": HelpDocument(
        context="dashboard",
        title="Dashboard Navigation",
        description="Navigate and control your workflow dashboard",
        sections=(
            HelpSection(
                "Navigation",
                (
                    "Tab/Shift+Tab: Navigate between panes",
                    "Space: Collapse/expand focused pane",
                    "Enter: Execute pane action",
                    "Escape: Clear selection",
                ),
            ),
            HelpSection(
                "Layout",
                (
                    "1: Quick mode (single pane)",
                    "2: Development mode (3 panes)",
                    "3: Monitoring mode (4 panes)",
                    "4: Debug mode (5 panes)",
                    "5: Full mode (5 panes, ultra-wide)",
                ),
            ),
            HelpSection(
                "System",
                (
                    "r: Refresh all panes",
                    "Ctrl+R: Hard refresh",
                    "h: Show/hide this help",
                    "q or Ctrl+C: Quit",
                ),
            ),
        ),
    ),
    "workflow": HelpDocument(
        context="workflow",
        title="Workflow Management",
        description="Control your project workflow and phase progression",
        sections=(
            HelpSection(
                "Phase Management",
                (
                    "Each phase has specific deliverables and quality gates",
                    "Complete all deliverables before advancing phases",
                    'Use "a" in the progress pane to advance',
                ),
            ),
            HelpSection(
                "Task Generation",
                (
                    "Tasks are generated based on your AI capabilities",
                    'Use "n" in the tasks pane to get the next task',
                    "Tasks adapt to your available tools and skills",
                ),
            ),
        ),
    ),
    "progress": HelpDocument(
        context="progress",
        title="Progress Pane",
        description="Project phase progression and completion status",
        sections=(
            HelpSection(
                "Reading the Pane",
                (
                    "Shows the current phase and its deliverables",
                    "Updates immediately when the current phase changes",
                ),
            ),
        ),
    ),
    "tasks": HelpDocument(
        context="tasks",
        title="Task Management",
        description="Work with generated tasks and deliverables",
        sections=(
            HelpSection(
                "Task Types",
                (
                    "Research: Information gathering and analysis",
                    "Design: Architecture and planning tasks",
                    "Implementation: Code and content creation",
                    "Testing: Validation and quality assurance",
                ),
            ),
            HelpSection(
                "Progress Tracking",
                (
                    "Dashboard shows current task status",
                    "Completed tasks unlock next phase tasks",
                ),
            ),
        ),
    ),
    "capabilities": HelpDocument(
        context="capabilities",
        title="AI Capabilities",
        description="Understand and manage your AI agent capabilities",
        sections=(
            HelpSection(
                "Tool Categories",
                (
                    "Core: Project management and file operations",
                    "Workflow: Task generation and progress tracking",
                    "Research: Web search and content analysis",
                    "Development: Code analysis and generation",
                ),
            ),
            HelpSection(
                "Gap Analysis",
                (
                    "Red indicators show missing critical tools",
                    "Yellow shows recommended improvements",
                    "Green indicates full capability coverage",
                ),
            ),
        ),
    ),
    "logs": HelpDocument(
        context="logs",
        title="Logs Pane",
        description="Real-time tool execution and system activity",
        sections=(
            HelpSection(
                "Reading the Pane",
                (
                    "Newest entries appear at the bottom",
                    "Only the most recent lines are kept",
                ),
            ),
        ),
    ),
    "tools": HelpDocument(
        context="tools",
        title="MCP Tools Pane",
        description="Direct tool execution and status monitoring",
        sections=(
            HelpSection(
                "Using Tools",
                (
                    "Select a tool with the arrow keys",
                    "Enter runs the selected tool",
                ),
            ),
        ),
    ),
}


def help_for(context: str | None) -> HelpDocument:
    """Select the help document for a context, or the general one."""
    if context is None:
        return GENERAL_HELP
    return HELP_DOCUMENTS.get(context, GENERAL_HELP)
