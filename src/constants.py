"""
Central constants for DevMind.

Bank layout, extraction keywords and ranking weights live here.
"""

# Default memory banks (name -> filePath/description/entityTypes)
DEFAULT_BANKS = {
    "development_patterns": {
        "filePath": "~/.claude/consciousness_banks/development_patterns.json",
        "description": "Technical approaches, coding solutions, architecture patterns, and development insights",
        "entityTypes": [
            "technical_insight",
            "solution_pattern",
            "architecture_approach",
            "debugging_strategy",
            "optimization_technique",
            "integration_pattern",
        ],
    },
    "breakthrough_moments": {
        "filePath": "~/.claude/consciousness_banks/breakthrough_moments.json",
        "description": 'Discovery instances, "exactly :P" moments, and collaboration breakthroughs',
        "entityTypes": [
            "breakthrough_discovery",
            "exactly_p_moment",
            "problem_solution_insight",
            "consciousness_collaboration",
            "paradigm_shift",
            "creative_solution",
        ],
    },
    "collaboration_insights": {
        "filePath": "~/.claude/consciousness_banks/collaboration_insights.json",
        "description": "Human-AI partnership patterns, co-creation wisdom, and collaboration insights",
        "entityTypes": [
            "collaboration_pattern",
            "consciousness_evolution",
            "partnership_insight",
            "co_creation_method",
            "communication_pattern",
            "trust_building_moment",
        ],
    },
    "project_evolution": {
        "filePath": "~/.claude/consciousness_banks/project_evolution.json",
        "description": "Development journey tracking, project growth patterns, and learning trajectories",
        "entityTypes": [
            "project_milestone",
            "development_trajectory",
            "skill_evolution",
            "complexity_growth",
            "refactoring_insight",
            "architecture_evolution",
        ],
    },
    "community_wisdom": {
        "filePath": "~/.claude/consciousness_banks/community_wisdom.json",
        "description": "Shareable patterns, anonymized insights, and collective developer wisdom",
        "entityTypes": [
            "shareable_pattern",
            "community_insight",
            "best_practice",
            "common_solution",
            "universal_principle",
            "collective_wisdom",
        ],
    },
}

# Claude Code data locations
CLAUDE_DIR = "~/.claude"
CLAUDE_PROJECTS_DIR = "~/.claude/projects"

# Pattern types
TECHNICAL_INSIGHT = "technical_insight"
BREAKTHROUGH_MOMENT = "breakthrough_moment"
COLLABORATION_PATTERN = "collaboration_pattern"
SOLUTION_APPROACH = "solution_approach"

# Pattern type -> destination bank. project_evolution and community_wisdom
# are curated by hand and never receive extracted patterns.
PATTERN_BANK_MAP = {
    TECHNICAL_INSIGHT: "development_patterns",
    SOLUTION_APPROACH: "development_patterns",
    BREAKTHROUGH_MOMENT: "breakthrough_moments",
    COLLABORATION_PATTERN: "collaboration_insights",
}

# Extraction limits
MAX_CONTENT_CHARS = 10000
QUALITY_THRESHOLD = 0.5
MIN_TOOL_CALLS_FOR_PATTERN = 3

# Bank search weights
NAME_MATCH_SCORE = 10
TYPE_MATCH_SCORE = 5
OBSERVATION_MATCH_SCORE = 3

# Ranking multipliers
SESSION_BOOST = 1.1
BANK_HIGH_RELEVANCE_THRESHOLD = 8
BANK_HIGH_RELEVANCE_BOOST = 1.15
RECENT_DAYS = 30
RECENT_BOOST = 1.2
SEMI_RECENT_DAYS = 90
SEMI_RECENT_BOOST = 1.1
EXACT_MATCH_BOOST = 1.3

# Natural language queries
STOP_WORDS = {
    "how", "what", "when", "where", "why", "do", "i", "to", "the", "a", "an",
    "and", "or", "but", "in", "on", "at", "for", "with", "by",
}
MAX_KEY_TERMS = 5
RELATED_PER_TERM = 3
MAX_DIRECT_MATCHES = 10
MAX_RELATED_INSIGHTS = 5

# Session scanning defaults
DEFAULT_SEARCH_LIMIT = 20
UNIFIED_SESSION_LIMIT = 50
MAX_LINES_SCANNED = 200
MAX_MATCHES_PER_SESSION = 5
SESSION_SAMPLE_LINES = 100

DEFAULT_SOCKET_PATH = "/tmp/devmind.sock"
DEFAULT_LOG_LEVEL = "INFO"
