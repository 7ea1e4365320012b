"""
Event catalogue for the QuizArena engine.

Every event name that travels over the EventBus is defined here, together
with the keys its payload dict carries. Payloads are plain dicts with
snake_case keys so rule conditions can address them as ``payload.<key>``.
"""


# ============ Game State ============
PHASE_CHANGED = "gameState:phaseChanged"              # {previous, current}
ACTIVE_TEAM_CHANGED = "gameState:activeTeamChanged"   # {previous_team_id, current_team_id}
GAME_STARTED = "gameState:gameStarted"                # {phase}
GAME_PAUSED = "gameState:gamePaused"                  # {phase}
GAME_RESUMED = "gameState:gameResumed"                # {phase}
GAME_ENDED = "gameState:gameEnded"                    # {previous}

# Commands accepted by the GameStateManager
PAUSE_REQUESTED = "gameState:pauseRequested"          # None
RESUME_REQUESTED = "gameState:resumeRequested"        # None

# ============ Scoring ============
SCORE_UPDATED = "scoring:scoreUpdated"      # {team_id, previous_score, current_score, delta}
LIFE_LOST = "scoring:lifeLost"              # {team_id, remaining_lives}
TEAM_ELIMINATED = "scoring:teamEliminated"  # {team_id}

# ============ Timers ============
TIMER_STARTED = "timer:started"      # {timer_id, duration, kind}
TIMER_TICK = "timer:tick"            # {timer_id, remaining, elapsed, duration}
TIMER_PAUSED = "timer:paused"        # {timer_id, remaining, elapsed}
TIMER_RESUMED = "timer:resumed"      # {timer_id, remaining, elapsed}
TIMER_STOPPED = "timer:stopped"      # {timer_id}
TIMER_COMPLETED = "timer:completed"  # {timer_id}
TIMER_MODIFIED = "timer:modified"    # {timer_id, duration, elapsed, speed_multiplier}
TIMER_WARNING = "timer:warning"      # {timer_id, threshold_ms, remaining}

# ============ Power-ups ============
POWERUP_ACTIVATED = "powerup:activated"      # {instance_id, type_id, effect_type, target_id, duration_ms, refreshed}
POWERUP_DEACTIVATED = "powerup:deactivated"  # {instance_id, type_id, effect_type, target_id}
POWERUP_EXPIRED = "powerup:expired"          # {instance_id, type_id, effect_type, target_id}

# ============ Game Flow ============
QUESTION_PRESENTED = "game:questionPresented"  # {question_id, team_id, position, total}
ANSWER_SELECTED = "game:answerSelected"        # {question_id, selected_option_id, is_correct,
                                               #  team_id, remaining_time_ms, score_multiplier}
SESSION_COMPLETED = "game:sessionCompleted"    # {rankings, winner_ids}

# ============ System ============
ENGINE_ERROR = "engine:error"  # {error, error_type, context}


ALL_EVENTS = (
    PHASE_CHANGED, ACTIVE_TEAM_CHANGED, GAME_STARTED, GAME_PAUSED,
    GAME_RESUMED, GAME_ENDED, PAUSE_REQUESTED, RESUME_REQUESTED,
    SCORE_UPDATED, LIFE_LOST, TEAM_ELIMINATED,
    TIMER_STARTED, TIMER_TICK, TIMER_PAUSED, TIMER_RESUMED, TIMER_STOPPED,
    TIMER_COMPLETED, TIMER_MODIFIED, TIMER_WARNING,
    POWERUP_ACTIVATED, POWERUP_DEACTIVATED, POWERUP_EXPIRED,
    QUESTION_PRESENTED, ANSWER_SELECTED, SESSION_COMPLETED,
    ENGINE_ERROR,
)
