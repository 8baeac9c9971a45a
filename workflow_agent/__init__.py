# Workflow Agent
# A2A agent runtime with an automation-workflow tool
#
# Exposes a conversational agent as an A2A-compliant server. Each task
# runs the model with a single tool that triggers an external workflow
# webhook, then reports the outcome as A2A status events.
