# app/memories/__init__.py
"""
IF-память: ветвление IF / ELSE IF / ELSE поверх живых точек и глобальных переменных.

Состав:
  - types.py         → модели ссылок, веток, памяти, состояния
  - errors.py        → ошибки ядра
  - source_ref.py    → формат ссылок "P:" / "GV:"
  - global_vars.py   → реестр глобальных переменных
  - resolver.py      → ссылка → текущее значение
  - bindings.py      → снимок псевдонимов на цикл
  - evaluator.py     → вычисление условий
  - state_machine.py → выбор ветки + гистерезис
  - committer.py     → запись выхода
  - validator.py     → проверка конфигурации при сохранении
  - codec.py         → запись ↔ словарь/YAML
  - storage.py       → интерфейсы хранилищ
  - repositories.py  → in-memory / YAML / SQL реализации
  - engine.py        → основной движок
  - runtime.py       → синглтоны процесса
"""
