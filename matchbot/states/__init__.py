from matchbot.states.wizard_states import MatchWizardStates

__all__ = ["MatchWizardStates"]
